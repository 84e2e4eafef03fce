"""Stock price ingestion and query pipeline."""

__version__ = "0.1.0"
