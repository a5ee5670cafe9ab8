"""HTTP API for the scheduling core."""
