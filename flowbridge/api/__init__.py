"""HTTP API for the workflow bridge."""
