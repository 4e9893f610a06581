"""FastAPI application for the analysis assistant."""
