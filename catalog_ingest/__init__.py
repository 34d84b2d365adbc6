"""Resumable ingestion of game catalog entries and screenshots."""

__version__ = "0.1.0"
