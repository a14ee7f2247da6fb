"""Local SQLite persistence: state snapshot and the outbound write queue."""
