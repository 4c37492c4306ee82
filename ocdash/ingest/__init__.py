"""Artifact ingestion and correlation engine."""
