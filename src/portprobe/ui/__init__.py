"""Terminal UI helpers for portprobe."""
