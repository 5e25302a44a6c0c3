"""Scanning tools for portprobe."""
