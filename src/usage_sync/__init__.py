"""Incremental, resumable sync of workspace usage records into DuckDB."""
