"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable JSON
(``--json`` flag). All formatting goes through these functions so the
CLI commands stay clean.
"""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from analysis_assistant.db.models import AnalysisStep
from analysis_assistant.services.chat_turn import ChatTurnResult

console = Console()

# Step status colors
STATUS_COLORS = {
    "pending": "yellow",
    "in_progress": "blue",
    "completed": "green",
    "failed": "red",
}

ROLE_COLORS = {
    "user": "cyan",
    "assistant": "magenta",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_steps_table(steps: list[AnalysisStep], as_json: bool = False) -> str:
    """Format a submission's step records as a Rich table or JSON.

    Args:
        steps: Step records in workflow order.
        as_json: If True, return JSON string instead of Rich table.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(
            [
                {
                    "step_id": s.step_id,
                    "status": s.status,
                    "details": s.details,
                    "updated_at": s.updated_at,
                }
                for s in steps
            ],
            indent=2,
        )

    if not steps:
        return "No analysis steps recorded."

    table = Table(title="Analysis Steps", show_lines=True)
    table.add_column("Step", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Details", style="white")
    table.add_column("Updated")

    for step in steps:
        color = STATUS_COLORS.get(step.status, "white")
        details = step.details or "—"
        table.add_row(
            step.step_id,
            f"[{color}]{step.status}[/{color}]",
            details if len(details) <= 80 else details[:77] + "...",
            step.updated_at[:19] if step.updated_at else "—",
        )
    return _render(table)


def format_history(messages: list[dict[str, Any]], as_json: bool = False) -> str:
    """Format serialized chat messages as Rich text or JSON.

    Args:
        messages: Output of ``serialize_message`` for each message.
        as_json: If True, return JSON string.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(messages, indent=2)

    if not messages:
        return "No messages found."

    table = Table(title="Conversation History", show_lines=True)
    table.add_column("Time", no_wrap=True)
    table.add_column("Conversation", style="dim", no_wrap=True)
    table.add_column("Role")
    table.add_column("Message", style="white")
    table.add_column("Intent", style="dim")

    for message in messages:
        color = ROLE_COLORS.get(message["role"], "white")
        classification = message.get("classification")
        intent = (
            f"{classification['step']}/{classification['action']} "
            f"({classification['confidence']:.2f})"
            if classification
            else ""
        )
        if message.get("expects_confirmation"):
            intent += " awaiting confirmation"
        elif message.get("action_taken"):
            intent += " dispatched"
        table.add_row(
            (message.get("timestamp") or "")[:19],
            message["conversation_id"][:8],
            f"[{color}]{message['role']}[/{color}]",
            escape(message["content"]),
            intent.strip(),
        )
    return _render(table)


def format_turn_result(result: ChatTurnResult, as_json: bool = False) -> str:
    """Format the reply of a chat turn as a Rich panel or JSON."""
    if as_json:
        return result.model_dump_json(indent=2)

    classification = result.classification
    subtitle = (
        f"{classification.step.value}/{classification.action.value} "
        f"confidence={classification.confidence:.2f} state={result.gate_state.value}"
    )
    lines = [escape(result.response), ""]
    lines.append(f"[dim]Conversation: {result.conversation_id}[/dim]")
    if result.needs_confirmation:
        lines.append("[yellow]Reply 'yes' to proceed or 'no' to cancel.[/yellow]")
    if result.action_taken:
        lines.append("[green]Request sent to the workflow engine.[/green]")
    if not result.persisted:
        lines.append("[red]Warning: this turn was not saved.[/red]")
    return _render(
        Panel("\n".join(lines), title="Assistant", subtitle=subtitle, expand=False)
    )
