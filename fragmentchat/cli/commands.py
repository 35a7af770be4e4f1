"""CLI commands for fragmentchat."""

import asyncio
import json
import sys
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from fragmentchat import __logo__, __version__

app = typer.Typer(
    name="fragmentchat",
    help=f"{__logo__} fragmentchat - code assistant chat history",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} fragmentchat v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """fragmentchat - code assistant chat history."""
    pass


def _set_verbose(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


# ============================================================================
# Gateway / Server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address"),
    port: int = typer.Option(None, "--port", "-p", help="Gateway port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Run the conversation persistence gateway."""
    from fragmentchat.channels.web import WebGateway
    from fragmentchat.config.loader import load_config
    from fragmentchat.session.store import PersistenceGateway, close_store, get_store

    _set_verbose(verbose)
    config = load_config()
    if host:
        config.gateway.host = host
    if port:
        config.gateway.port = port

    gateway = PersistenceGateway(get_store(config))
    if gateway.configured:
        console.print(f"[green]✓[/green] Storage: {config.storage_path}")
    else:
        console.print("[yellow]Warning: storage not configured, turns will be skipped[/yellow]")

    console.print(
        f"{__logo__} Starting gateway on {config.gateway.host}:{config.gateway.port}..."
    )
    server = WebGateway(config.gateway, gateway)

    async def run():
        try:
            await server.start()
        finally:
            await server.stop()
            close_store()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\nShutting down...")


# ============================================================================
# History
# ============================================================================


@app.command()
def history(
    conversation_id: str = typer.Option(None, "--id", help="Conversation ID"),
    user_id: str = typer.Option(None, "--user", "-u", help="User ID"),
):
    """Show stored turns for a conversation or user."""
    from fragmentchat.config.loader import load_config
    from fragmentchat.providers.persistence import PersistenceClient
    from fragmentchat.session.store import ValidationError

    client = PersistenceClient.from_config(load_config())

    try:
        messages = asyncio.run(client.query(conversation_id=conversation_id, user_id=user_id))
    except ValidationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not messages:
        console.print("No stored turns.")
        return

    table = Table(title="Conversation history")
    table.add_column("Created", style="dim")
    table.add_column("Conversation")
    table.add_column("User")
    table.add_column("Role", style="cyan")
    table.add_column("Content")

    for msg in messages:
        table.add_row(
            msg.get("createdAt", ""),
            msg.get("conversationId", ""),
            msg.get("userId", ""),
            msg.get("role", ""),
            _summarize_content(msg.get("content")),
        )

    console.print(table)


def _summarize_content(content) -> str:
    """One-line preview of stored content items."""
    if not content:
        return ""
    if isinstance(content, str):
        return content[:60]

    parts = []
    for item in content:
        kind = item.get("type")
        if kind in ("text", "code"):
            parts.append(item.get("text", "")[:60])
        elif kind == "image":
            parts.append("[image]")
        elif kind == "codeSelection":
            lines = item.get("lineRange", {})
            parts.append(f"[{item.get('fileName')}:{lines.get('start')}-{lines.get('end')}]")
    return " ".join(parts)


# ============================================================================
# Render
# ============================================================================


@app.command()
def render(
    path: Path = typer.Argument(..., help="JSON file with a list of turns"),
    tokens: bool = typer.Option(False, "--tokens", "-t", help="Print a token estimate"),
):
    """Print the provider payload for a saved conversation."""
    from fragmentchat.agent.compactor import Compactor
    from fragmentchat.config.loader import load_config
    from fragmentchat.session.messages import Conversation

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        conversation = Conversation.from_list(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        console.print(f"[red]Error: cannot read conversation from {path}: {e}[/red]")
        raise typer.Exit(1)

    compactor = Compactor.from_config(load_config())
    messages = compactor.to_provider_messages(conversation)
    console.print_json(json.dumps(messages))

    if tokens:
        console.print(f"[dim]~{compactor.estimate_tokens(messages)} tokens[/dim]")


if __name__ == "__main__":
    app()
