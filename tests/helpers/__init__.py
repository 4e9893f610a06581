"""Shared test doubles for the analysis assistant test suite."""
