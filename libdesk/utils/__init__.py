"""Input validation and terminal output helpers for the CLI."""
