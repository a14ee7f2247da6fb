"""
Study-Sequence Tracker.

Credits logged minutes to the slots of the active study plan and moves the
global cursor forward when the slot at the cursor reaches its subject's
goal. Study streak bookkeeping rides along with log creation.

The cursor only ever moves forward here: shrinking or deleting a log that
already pushed the cursor past a slot leaves the cursor where it is.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta

from loguru import logger

from studyflow.study.models import StudyData, StudyLogEntry, StudySequence


def _matching_item_index(sequence: StudySequence | None, log: StudyLogEntry) -> int | None:
    """Index the log is linked to, if it still points at a slot for the same subject."""
    index = log.sequence_item_index
    if sequence is None or index is None:
        return None
    if not 0 <= index < len(sequence.sequence):
        logger.debug("Log {} points past the end of plan {}", log.id, sequence.id)
        return None
    if sequence.sequence[index].subject_id != log.subject_id:
        logger.debug(
            "Log {} is linked to slot {} of another subject; no credit applied",
            log.id,
            index,
        )
        return None
    return index


def _add_minutes(sequence: StudySequence, index: int, minutes: int) -> StudySequence:
    items = list(sequence.sequence)
    item = items[index]
    items[index] = replace(item, total_time_studied=max(0, item.total_time_studied + minutes))
    return replace(sequence, sequence=tuple(items))


def credit_log(
    sequence: StudySequence | None,
    sequence_index: int,
    log: StudyLogEntry,
    goal_minutes: int,
) -> tuple[StudySequence | None, int]:
    """
    Add a new log's minutes to its slot.

    Args:
        sequence: Active plan (None means nothing to credit)
        sequence_index: Live global cursor
        log: The log being added
        goal_minutes: The slot subject's study_duration; 0 never advances

    Returns:
        Tuple of (updated plan, updated cursor). The cursor moves by at most
        one step no matter how far the slot overshoots its goal.
    """
    index = _matching_item_index(sequence, log)
    if index is None:
        return sequence, sequence_index

    updated = _add_minutes(sequence, index, log.duration)
    total = updated.sequence[index].total_time_studied

    if index == sequence_index and goal_minutes > 0 and total >= goal_minutes:
        logger.info(
            "Slot {} reached its goal ({} >= {} min); advancing cursor",
            index,
            total,
            goal_minutes,
        )
        sequence_index += 1

    return updated, sequence_index


def apply_duration_change(
    sequence: StudySequence | None,
    original: StudyLogEntry,
    updated: StudyLogEntry,
) -> StudySequence | None:
    """Apply only the duration difference of an edited log to its slot."""
    difference = updated.duration - original.duration
    if difference == 0:
        return sequence
    index = _matching_item_index(sequence, updated)
    if index is None:
        return sequence
    return _add_minutes(sequence, index, difference)


def debit_log(sequence: StudySequence | None, log: StudyLogEntry) -> StudySequence | None:
    """Remove a deleted log's minutes from its slot, never going below zero."""
    index = _matching_item_index(sequence, log)
    if index is None:
        return sequence
    return _add_minutes(sequence, index, -log.duration)


def active_sequence_item_index(state: StudyData, subject_id: str) -> int | None:
    """Cursor position when the slot there belongs to subject_id."""
    sequence = state.study_sequence
    if sequence is None:
        return None
    index = state.sequence_index
    if 0 <= index < len(sequence.sequence) and sequence.sequence[index].subject_id == subject_id:
        return index
    return None


def zero_sequence(sequence: StudySequence) -> StudySequence:
    """Clear the accumulated time of every slot."""
    return replace(
        sequence,
        sequence=tuple(replace(item, total_time_studied=0) for item in sequence.sequence),
    )


# =============================================================================
# Streak
# =============================================================================


def _calendar_day(iso_value: str) -> date:
    return datetime.fromisoformat(iso_value.replace("Z", "+00:00")).date()


def next_streak(
    last_studied_date: str | None,
    streak: int,
    log_date: str,
) -> tuple[int, str | None]:
    """
    Update the study streak for a log dated log_date.

    Same calendar day keeps everything, the following day extends the
    streak, anything else starts over at 1.

    Returns:
        Tuple of (streak, last_studied_date)
    """
    day = _calendar_day(log_date)
    if last_studied_date is not None:
        last_day = _calendar_day(last_studied_date)
        if last_day == day:
            return streak, last_studied_date
        if last_day == day - timedelta(days=1):
            return streak + 1, log_date
    return 1, log_date
