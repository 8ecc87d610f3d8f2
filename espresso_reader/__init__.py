"""SQLite persistence layer, retry policy and start-up helpers for a rollups node reader."""

__version__ = "0.1.0"

__all__ = ["model", "reads", "repository", "retry", "schema", "startup", "writes"]