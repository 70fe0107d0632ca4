"""pure-ingest — Pure market-activity ingestion pipeline."""

__version__ = "0.1.0"
