"""Utility helpers for portprobe."""
