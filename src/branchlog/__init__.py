"""Per-branch work log with an embedded shell and offline voice notes."""

__version__ = "0.1.0"
