"""Configuration utilities."""
