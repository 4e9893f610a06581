"""Analysis assistant CLI.

Runs the API server and exposes the chat turn and the local stores from
the terminal. Every command except ``serve`` runs in-process against the
configured database.

Usage:
    analysis-assistant serve                      Start the API server
    analysis-assistant ask <submission> <text>    Run one chat turn
    analysis-assistant history <submission>       Show stored messages
    analysis-assistant register <project> <url>   Register a submission
    analysis-assistant steps <submission>         Show step records
"""

import asyncio
import logging
from typing import Optional

import typer
from rich.console import Console

from analysis_assistant.cli.output import (
    format_history,
    format_steps_table,
    format_turn_result,
)
from analysis_assistant.config import AssistantSettings, load_settings
from analysis_assistant.db.connection import get_db_context, init_db
from analysis_assistant.db.models import StepId
from analysis_assistant.errors import (
    AssistantError,
    IdentifierResolutionError,
    PersistenceError,
    format_error,
)
from analysis_assistant.services.chat_turn import (
    ChatTurnRequest,
    ChatTurnResult,
    TurnDependencies,
    TurnMessage,
    process_turn_bounded,
)
from analysis_assistant.services.conversation_store import (
    ConversationStore,
    serialize_message,
)
from analysis_assistant.services.llm_client import CompletionClient
from analysis_assistant.services.step_records import StepRecordService
from analysis_assistant.services.submission_resolver import SubmissionResolver
from analysis_assistant.services.workflow_client import WorkflowClient

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="analysis-assistant",
    help="Conversational assistant for repository analysis workflows",
    no_args_is_help=True,
)

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to analysis_assistant.yaml config file"
    ),
):
    """Analysis assistant CLI."""
    global _config_path
    _config_path = config


def _settings() -> AssistantSettings:
    try:
        return load_settings(_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _fail(error: AssistantError) -> None:
    console.print(f"[red]{format_error(error)}[/red]")
    raise typer.Exit(1)


def _identifier_error(e: IdentifierResolutionError) -> AssistantError:
    return AssistantError.from_code(e.error_code, identifier=e.identifier)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the API server."""
    import uvicorn

    settings = _settings()
    bind_host = host or settings.server.host
    bind_port = port or settings.server.port
    _log.info("Starting API server on %s:%d", bind_host, bind_port)
    uvicorn.run(
        "analysis_assistant.api.main:app",
        host=bind_host,
        port=bind_port,
        workers=1,
        log_level=settings.server.log_level,
        lifespan="on",
    )


@app.command()
def ask(
    submission: str = typer.Argument(..., help="Submission UUID or project id"),
    message: str = typer.Argument(..., help="Message to send"),
    section: Optional[str] = typer.Option(None, "--section", help="UI section"),
    step: Optional[str] = typer.Option(None, "--step", help="Analysis step in view"),
    conversation: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Conversation id to continue"
    ),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Run one chat turn against a submission."""
    if step is not None and step not in {s.value for s in StepId}:
        _fail(AssistantError.from_code("E-2002", step=step))

    settings = _settings()
    init_db()
    request = ChatTurnRequest(
        messages=[TurnMessage(role="user", content=message)],
        submission_ref=submission,
        section=section,
        analysis_step=step,
        conversation_id=conversation,
    )

    async def _run() -> ChatTurnResult:
        async with WorkflowClient(settings.workflow) as engine:
            with get_db_context() as db:
                deps = TurnDependencies(
                    db=db,
                    completer=CompletionClient(settings.completion),
                    engine=engine,
                    settings=settings,
                )
                return await process_turn_bounded(request, deps)

    try:
        result = asyncio.run(_run())
    except IdentifierResolutionError as e:
        _fail(_identifier_error(e))
    except AssistantError as e:
        _fail(e)
    typer.echo(format_turn_result(result, as_json=as_json).rstrip("\n"))


@app.command()
def history(
    submission: str = typer.Argument(..., help="Submission UUID or project id"),
    conversation: Optional[str] = typer.Option(
        None, "--conversation", "-c", help="Only this conversation"
    ),
    section: Optional[str] = typer.Option(None, "--section", help="Only this section"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show stored chat messages of a submission."""
    init_db()
    with get_db_context() as db:
        try:
            resolved = SubmissionResolver(db).resolve(submission)
        except IdentifierResolutionError as e:
            _fail(_identifier_error(e))
        store = ConversationStore(db)
        if conversation:
            messages = store.list_messages(resolved.id, conversation)
        else:
            messages = store.list_section_messages(resolved.id, section)
        rows = [serialize_message(m) for m in messages]
    typer.echo(format_history(rows, as_json=as_json).rstrip("\n"))


@app.command()
def register(
    project_id: int = typer.Argument(..., help="Project id"),
    repository_url: str = typer.Argument(..., help="Repository to analyze"),
    name: Optional[str] = typer.Option(
        None, "--name", help="Project name, used when the project is new"
    ),
    submission_id: Optional[str] = typer.Option(
        None, "--submission-id", help="Submission UUID assigned by the workflow engine"
    ),
):
    """Register a submission and create its step records."""
    init_db()
    with get_db_context() as db:
        resolver = SubmissionResolver(db)
        try:
            if not resolver.project_exists(project_id):
                resolver.create_project(
                    name or f"Project {project_id}",
                    repository_url=repository_url,
                    project_id=project_id,
                )
                console.print(f"Created project [cyan]{project_id}[/cyan]")
            created = resolver.register_submission(
                project_id, repository_url, submission_id=submission_id
            )
        except PersistenceError as e:
            _fail(AssistantError.from_code("E-4001", details=str(e)))
        console.print(f"Registered submission [cyan]{created.id}[/cyan]")


@app.command()
def steps(
    submission: str = typer.Argument(..., help="Submission UUID or project id"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the cached analysis step records of a submission."""
    init_db()
    with get_db_context() as db:
        try:
            resolved = SubmissionResolver(db).resolve(submission)
        except IdentifierResolutionError as e:
            _fail(_identifier_error(e))
        output = format_steps_table(
            StepRecordService(db).list_steps(resolved.id), as_json=as_json
        )
    typer.echo(output.rstrip("\n"))


if __name__ == "__main__":
    app()
