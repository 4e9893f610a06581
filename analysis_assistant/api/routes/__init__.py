"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from analysis_assistant.api.routes import assistant

__all__ = [
    "assistant",
]
