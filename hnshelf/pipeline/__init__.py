"""Retrieval pipeline, background refresh, schedulers and the CLI."""
