"""Shared helpers for configuration files and timestamps."""
