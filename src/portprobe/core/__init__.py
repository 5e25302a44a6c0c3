"""Core helpers for portprobe."""
