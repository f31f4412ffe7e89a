"""Adaptive learning-scheduling core."""
