"""Pydantic schemas exchanged with external collaborators."""
