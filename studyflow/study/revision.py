"""
Revision Scheduler.

Maps the fixed spaced-repetition cadence onto a subject's completed topics.

Each value in REVISION_SEQUENCE is a Topic.order. A topic reappears at
growing offsets, which is how increasing review intervals are encoded.
The subject's revision_progress is a cursor into the derived list, so the
schedule grows as more topics are completed and the cursor has to be
re-clamped whenever completion changes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from studyflow.study.models import Subject, Topic

REVISION_SEQUENCE: tuple[int, ...] = (
    0, 1, 0, 2, 1, 3, 2, 4, 3, 0, 5, 4, 1, 6, 5, 2, 7, 6, 3, 8, 7, 4, 0, 9, 8, 5, 1,
    10, 9, 6, 2, 11, 10, 7, 3, 12, 11, 8, 4, 13, 12, 9, 5, 14, 13, 10, 6, 15, 14, 11,
    7, 16, 15, 12, 8, 17, 16, 13, 9, 18, 17, 15, 11, 19, 18, 15, 11, 20, 19, 16, 12,
    21, 20, 17, 13, 21, 20, 17, 13, 22, 21, 18, 14, 22, 21, 18, 14, 23, 22, 19, 15,
)


class StepStatus(str, Enum):
    """Display state of one step in a subject's revision schedule."""

    COMPLETED = "completed"
    CURRENT = "current"
    PENDING = "pending"


@dataclass(frozen=True)
class RevisionStep:
    index: int
    topic: Topic
    status: StepStatus


def relevant_sequence(
    subject: Subject,
    cadence: tuple[int, ...] = REVISION_SEQUENCE,
) -> list[Topic]:
    """
    Build the subject's revision schedule.

    Args:
        subject: Subject whose completed topics are scheduled
        cadence: Topic orders in review order

    Returns:
        Completed topics in cadence order; orders with no completed
        topic are skipped, repeated orders yield repeated topics.
    """
    completed: dict[int, Topic] = {}
    for topic in subject.topics:
        if topic.is_completed:
            completed.setdefault(topic.order, topic)
    return [completed[order] for order in cadence if order in completed]


def clamp_progress(subject: Subject, progress: int) -> int:
    """Clamp a requested cursor into [0, len(relevant_sequence)]."""
    return max(0, min(progress, len(relevant_sequence(subject))))


def effective_revision_progress(subject: Subject) -> int:
    """Stored progress corrected against the current schedule length."""
    return clamp_progress(subject, subject.revision_progress)


def reclamp_subject(subject: Subject) -> Subject:
    """Return the subject with its cursor clamped, or itself if already valid."""
    clamped = effective_revision_progress(subject)
    if clamped == subject.revision_progress:
        return subject
    return replace(subject, revision_progress=clamped)


def is_revision_complete(subject: Subject) -> bool:
    """Terminal until more topics complete and extend the schedule."""
    return effective_revision_progress(subject) >= len(relevant_sequence(subject))


def revision_steps(subject: Subject) -> list[RevisionStep]:
    """Annotate each scheduled topic with its completed/current/pending status."""
    progress = effective_revision_progress(subject)
    steps = []
    for index, topic in enumerate(relevant_sequence(subject)):
        if index < progress:
            status = StepStatus.COMPLETED
        elif index == progress:
            status = StepStatus.CURRENT
        else:
            status = StepStatus.PENDING
        steps.append(RevisionStep(index=index, topic=topic, status=status))
    return steps


def toggle_revision_step(subject: Subject, index: int) -> int | None:
    """
    Resolve a click on a revision step.

    Only the current step can be marked done and only the step right
    before the cursor can be undone. Everything else is inert.

    Returns:
        The new progress value, or None when the click does nothing
    """
    progress = effective_revision_progress(subject)
    length = len(relevant_sequence(subject))
    if index == progress and progress < length:
        return progress + 1
    if index == progress - 1 and index >= 0:
        return progress - 1
    return None
