"""Command-line interface for the analysis assistant."""
