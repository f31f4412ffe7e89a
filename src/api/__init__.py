"""HTTP API for the learning analytics service."""
