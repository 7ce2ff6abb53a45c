"""Market signals - snapshot-driven market signal detection and investor matching."""

__version__ = "0.1.0"
