"""
Study domain for studyflow.

Provides:
- Immutable study records and the pure study_reducer
- Revision cadence over completed topics
- Study-plan progress tracking and streaks
- The Pomodoro state machine
"""

from studyflow.study.actions import Action, Actions, ActionType
from studyflow.study.models import StudyData
from studyflow.study.reducer import study_reducer
from studyflow.study.store import StudyStore

__all__ = [
    "Action",
    "Actions",
    "ActionType",
    "StudyData",
    "StudyStore",
    "study_reducer",
]
