"""
Unit tests for the revision scheduler.
"""

from dataclasses import replace

import pytest

from studyflow.study.revision import (
    REVISION_SEQUENCE,
    StepStatus,
    clamp_progress,
    effective_revision_progress,
    is_revision_complete,
    reclamp_subject,
    relevant_sequence,
    revision_steps,
    toggle_revision_step,
)


class TestRevisionSequence:
    def test_cadence_has_91_entries(self):
        assert len(REVISION_SEQUENCE) == 91

    def test_cadence_starts_with_expanding_reviews(self):
        assert REVISION_SEQUENCE[:10] == (0, 1, 0, 2, 1, 3, 2, 4, 3, 0)


class TestRelevantSequence:
    def test_no_completed_topics_gives_empty_schedule(self, subject_factory):
        subject = subject_factory(topics=5)
        assert relevant_sequence(subject) == []

    def test_only_completed_topics_are_scheduled(self, subject_factory):
        subject = subject_factory(topics=3, completed={0})
        schedule = relevant_sequence(subject)

        assert {t.order for t in schedule} == {0}
        assert len(schedule) == REVISION_SEQUENCE.count(0)

    def test_duplicates_follow_cadence(self, subject_factory):
        subject = subject_factory(topics=2, completed={0, 1})
        orders = [t.order for t in relevant_sequence(subject)]

        expected = [o for o in REVISION_SEQUENCE if o in (0, 1)]
        assert orders == expected
        assert orders[:3] == [0, 1, 0]

    def test_length_never_shrinks_as_topics_complete(self, subject_factory):
        subject = subject_factory(topics=25)
        previous = 0
        for order in range(25):
            topics = tuple(
                replace(t, is_completed=True) if t.order <= order else t for t in subject.topics
            )
            length = len(relevant_sequence(replace(subject, topics=topics)))
            assert length >= previous
            previous = length

    def test_orders_missing_from_cadence_are_never_scheduled(self, subject_factory):
        subject = subject_factory(topics=30, completed={24, 25, 29})
        assert relevant_sequence(subject) == []


class TestClamping:
    @pytest.mark.parametrize("requested,expected", [(-5, 0), (0, 0), (3, 3), (10_000, None)])
    def test_clamp_progress(self, subject_factory, requested, expected):
        subject = subject_factory(topics=2, completed={0, 1})
        length = len(relevant_sequence(subject))

        result = clamp_progress(subject, requested)

        assert result == (length if expected is None else expected)

    def test_effective_progress_corrects_stale_value(self, subject_factory):
        subject = subject_factory(topics=1, completed={0}, revision_progress=50)
        assert effective_revision_progress(subject) == REVISION_SEQUENCE.count(0)

    def test_reclamp_returns_same_object_when_valid(self, subject_factory):
        subject = subject_factory(topics=1, completed={0}, revision_progress=1)
        assert reclamp_subject(subject) is subject

    def test_reclamp_fixes_out_of_range(self, subject_factory):
        subject = subject_factory(topics=1, revision_progress=4)
        assert reclamp_subject(subject).revision_progress == 0


class TestSteps:
    def test_statuses_around_cursor(self, subject_factory):
        subject = subject_factory(topics=2, completed={0, 1}, revision_progress=2)
        steps = revision_steps(subject)

        assert [s.status for s in steps[:4]] == [
            StepStatus.COMPLETED,
            StepStatus.COMPLETED,
            StepStatus.CURRENT,
            StepStatus.PENDING,
        ]

    def test_complete_when_cursor_reaches_end(self, subject_factory):
        subject = subject_factory(topics=1, completed={0})
        length = len(relevant_sequence(subject))

        assert not is_revision_complete(subject)
        assert is_revision_complete(replace(subject, revision_progress=length))

    def test_empty_schedule_counts_as_complete(self, subject_factory):
        assert is_revision_complete(subject_factory(topics=3))


class TestToggleRevisionStep:
    def test_clicking_current_step_advances(self, subject_factory):
        subject = subject_factory(topics=2, completed={0, 1}, revision_progress=1)
        assert toggle_revision_step(subject, 1) == 2

    def test_clicking_previous_step_undoes(self, subject_factory):
        subject = subject_factory(topics=2, completed={0, 1}, revision_progress=1)
        assert toggle_revision_step(subject, 0) == 0

    def test_other_steps_are_inert(self, subject_factory):
        subject = subject_factory(topics=2, completed={0, 1}, revision_progress=2)
        assert toggle_revision_step(subject, 0) is None
        assert toggle_revision_step(subject, 5) is None

    def test_cannot_advance_past_end(self, subject_factory):
        subject = subject_factory(topics=1, completed={0})
        length = len(relevant_sequence(subject))
        done = replace(subject, revision_progress=length)

        assert toggle_revision_step(done, length) is None
        assert toggle_revision_step(done, length - 1) == length - 1
