"""Shared helpers: logging setup and timestamp handling."""
