"""Short-form video ingestion: lease-based job queue plus an AI content pipeline."""

__all__ = ["__version__"]
__version__ = "0.1.0"
