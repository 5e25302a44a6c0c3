"""portprobe - asynchronous TCP connect port scanner."""

__version__ = "0.1.0"
