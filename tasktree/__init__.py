"""tasktree: dependency-aware project tracker over a synced file tree."""

__version__ = "0.3.0"
