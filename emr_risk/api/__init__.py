"""HTTP API for the AI dashboard."""
