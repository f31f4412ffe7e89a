"""Command-line interface for the learning analytics core."""
