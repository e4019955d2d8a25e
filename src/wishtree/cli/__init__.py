"""Command-line interface for Wishtree."""
