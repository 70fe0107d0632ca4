"""Repositories — one class per table, explicit SQL, pydantic models in and out."""
