"""
studyflow - study activity tracking and Pomodoro scheduling engine.

Subpackages:
- study: domain model, reducer, revision scheduler, sequence tracker, Pomodoro engine
- sync: optimistic dispatch with write-behind mirroring to a remote document store
- persistence: local SQLite snapshot and dirty-flag persister
- cli: terminal front end
"""

__version__ = "1.0.0"
