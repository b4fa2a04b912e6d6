"""Discord chat summaries and daily digests."""

__version__ = "0.1.0"
