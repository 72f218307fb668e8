"""Shared infrastructure: store access, settings, paths and logging."""
