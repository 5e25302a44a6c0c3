"""
Commands package for portprobe.
This module registers all available commands.
"""


def register_commands(cli):
    """Register all commands with the main CLI.

    Args:
        cli: The main Click command group
    """
    from .scan import register_commands as register_scan_commands

    register_scan_commands(cli)
