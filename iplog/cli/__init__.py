"""Command line entry points for iplog."""
