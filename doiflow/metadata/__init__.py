"""Content items and candidate DOI metadata."""
