"""Core data model, artifacts and exceptions."""
