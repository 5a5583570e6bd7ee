"""Hive Monitor - telemetry ingestion and LVD threshold service."""

__version__ = "1.0.0"
