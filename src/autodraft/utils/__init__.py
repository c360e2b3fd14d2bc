"""Logging and file IO helpers."""
