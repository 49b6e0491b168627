"""Pydantic schemas: system events and lenient record read models."""
