"""Lorica — CORS-aware signing proxy for the Summon API."""

__version__ = "0.2.0"
