"""Story Ledger: character continuity tracking for chapter-by-chapter generation."""

__version__ = "0.3.0"
