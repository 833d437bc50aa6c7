"""Configuration and metadata helpers."""
