"""Process entry points (CLI)."""
