"""Serving layer — HTTP transport for the ingestion pipeline."""
