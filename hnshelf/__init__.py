"""hnshelf: cached Hacker News retrieval with retention-managed reading lists."""

__version__ = "0.1.0"
