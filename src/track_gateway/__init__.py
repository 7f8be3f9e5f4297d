"""TCP ingestion gateway for the @Track vehicle telemetry protocol."""

__version__ = "0.3.0"
