"""Service layer for the analysis assistant.

Provides persistence (conversation log, step records, submission
lookup), outbound clients (completion service, workflow engine), context
aggregation, and the chat-turn handler that ties them together.
"""
