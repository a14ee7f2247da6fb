"""
Remote sync for studyflow.

Local actions are applied first; the document writes they imply are
queued in SQLite and delivered by a background worker.
"""
