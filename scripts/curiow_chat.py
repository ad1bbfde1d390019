#!/usr/bin/env python3
"""
Curiow Interactive Deep-Topic Chat

Command-line chat panel for a single gem, talking to a running
Curiow API service.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Add project root and backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / "apps" / "backend"))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from app.core.config import get_settings
from packages.core.chat import (
    ChatPanel,
    ConversationTurn,
    EventBus,
    JsonFileStorage,
    SessionIdentityManager,
    SuggestionItem,
)
from packages.core.chat.api_client import CuriowApiClient, HttpConversationStore


console = Console()


# -----------------------------
# Display Functions
# -----------------------------


def show_header(gem_id: str):
    """Display the application header."""
    header = Text()
    header.append("💎 ", style="bright_magenta")
    header.append("Curiow", style="bold bright_cyan")
    header.append(f" - Approfondisci la gemma {gem_id}", style="dim")

    console.print()
    console.print(Panel(
        header,
        box=box.DOUBLE,
        border_style="bright_blue",
        padding=(0, 2),
    ))
    console.print()


def show_help():
    """Display help information."""
    help_text = Text()
    help_text.append("Comandi:\n", style="bold cyan")
    for command, description in (
        ("help", "Mostra questo aiuto"),
        ("suggest", "Mostra le domande suggerite"),
        ("s <n>", "Chiedi la domanda suggerita n"),
        ("f <n>", "Chiedi l'approfondimento n dell'ultima risposta"),
        ("sessions", "Elenca le sessioni salvate"),
        ("use <n>", "Riprendi la sessione n"),
        ("delete <n>", "Elimina la sessione n"),
        ("new", "Inizia una nuova sessione"),
        ("exit", "Esci"),
    ):
        help_text.append(f"  {command:<11}", style="green")
        help_text.append(f"- {description}\n")
    help_text.append("\nQualsiasi altro testo viene inviato come domanda.", style="dim")

    console.print(Panel(
        help_text,
        title="[bold]Help[/bold]",
        border_style="dim",
    ))


def show_suggestions(panel: ChatPanel) -> list[SuggestionItem]:
    """Display the visible suggestion groups and return them numbered."""
    view = panel.suggestions()
    numbered = [*view.dynamic, *view.general, *view.section]
    if not numbered:
        console.print("[dim]Nessuna domanda suggerita.[/dim]")
        return []

    table = Table(
        title="[bold cyan]Domande suggerite[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("#", style="dim")
    table.add_column("Domanda", style="green")
    table.add_column("Sezione", style="yellow")

    for i, item in enumerate(numbered, 1):
        table.add_row(str(i), item.testo, item.element.name if item.element else "general")
    console.print(table)
    return numbered


def show_turn(turn: ConversationTurn):
    """Display a finalized turn."""
    if turn.error:
        console.print(Panel(
            f"[red]{turn.error}[/red]",
            title=f"[bold red]{turn.question}[/bold red]",
            border_style="red",
        ))
        return

    console.print(Panel(
        Markdown(turn.answer or ""),
        title=f"[bold green]{turn.question}[/bold green]",
        border_style="green",
    ))
    for i, follow_up in enumerate(turn.follow_ups, 1):
        console.print(f"  [cyan]f {i}[/cyan] {follow_up}")


def show_history(turns: list[ConversationTurn]):
    if not turns:
        console.print("[dim]Sessione vuota.[/dim]")
    for turn in turns:
        show_turn(turn)


def show_error(title: str, message: str):
    """Display an error message."""
    console.print(Panel(
        f"[red]{message}[/red]",
        title=f"[bold red]{title}[/bold red]",
        border_style="red",
    ))


def load_questions(path: str | None) -> list[SuggestionItem]:
    """Load section questions from a JSON list of suggestion items."""
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return [SuggestionItem.model_validate(item) for item in data]


# -----------------------------
# Main Processing
# -----------------------------


async def ask(panel: ChatPanel, coro):
    with console.status("[bold cyan]Sto pensando...[/bold cyan]", spinner="dots"):
        turn = await coro
    if turn is not None:
        show_turn(turn)


async def run(args):
    settings = get_settings()
    token = args.token or os.getenv("CURIOW_TOKEN")

    async def token_provider():
        return token

    client = CuriowApiClient(
        args.base_url or settings.curiow_api_url,
        token_provider,
        user_id=args.user_id,
        timeout=settings.answer_timeout_seconds,
    )
    store = HttpConversationStore(args.base_url or settings.curiow_api_url, args.user_id)
    bus = EventBus()
    identity = SessionIdentityManager(bus, JsonFileStorage(settings.daily_session_file))
    panel = ChatPanel(
        gem_id=args.gem_id,
        store=store,
        client=client,
        bus=bus,
        identity=identity,
        user_id=args.user_id,
        description=args.description,
        section_questions=load_questions(args.questions),
        timeout=settings.answer_timeout_seconds,
    )
    panel.start()

    show_header(args.gem_id)
    console.print(f"[green]✓[/green] Sessione del giorno: [cyan]{panel.daily_session_id}[/cyan]")
    console.print("[dim]Scrivi 'help' per i comandi, oppure fai una domanda.[/dim]")
    console.print()

    suggestions = show_suggestions(panel)
    sessions = []

    try:
        while True:
            try:
                line = await asyncio.to_thread(Prompt.ask, "[bold magenta]💎 Domanda[/bold magenta]")
            except (KeyboardInterrupt, EOFError):
                break
            line = line.strip()
            command, _, arg = line.partition(" ")
            command = command.lower()

            if not line:
                continue
            if command in ("exit", "quit", "q"):
                break
            try:
                if command == "help":
                    show_help()
                elif command == "suggest":
                    suggestions = show_suggestions(panel)
                elif command == "s" and arg.isdigit() and 0 < int(arg) <= len(suggestions):
                    await ask(panel, panel.ask_suggestion(suggestions[int(arg) - 1]))
                elif command == "f" and arg.isdigit() and panel.turns:
                    last = panel.turns[-1]
                    if 0 < int(arg) <= len(last.follow_ups):
                        await ask(panel, panel.ask_follow_up(last.follow_ups[int(arg) - 1], last))
                elif command == "sessions":
                    sessions = await panel.list_sessions()
                    for i, s in enumerate(sessions, 1):
                        marker = "●" if s.id == panel.current_session_id else " "
                        console.print(f" {marker} [cyan]{i}[/cyan] {s.title} [dim]{s.modified_at:%d/%m %H:%M}[/dim]")
                elif command == "use" and arg.isdigit() and 0 < int(arg) <= len(sessions):
                    show_history(await panel.use_existing_session(sessions[int(arg) - 1].id))
                elif command == "delete" and arg.isdigit() and 0 < int(arg) <= len(sessions):
                    await panel.delete_session(sessions[int(arg) - 1].id)
                    console.print("[green]✓[/green] Sessione eliminata")
                elif command == "new":
                    panel.new_session()
                    suggestions = show_suggestions(panel)
                else:
                    await ask(panel, panel.ask_custom(line))
            except Exception as e:
                show_error("Errore", str(e))
    finally:
        await panel.close()
        await client.aclose()
        await store.aclose()
        console.print("\n[dim]Alla prossima! 👋[/dim]\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Curiow deep-topic chat")
    parser.add_argument("gem_id", help="Gem to talk about")
    parser.add_argument("--user-id", required=True, help="User id sent as X-User-Id")
    parser.add_argument("--description", default="", help="Gem description used as context")
    parser.add_argument("--questions", help="JSON file with section questions")
    parser.add_argument("--token", help="Bearer token (default: $CURIOW_TOKEN)")
    parser.add_argument("--base-url", help="Curiow API base URL")
    args = parser.parse_args()

    asyncio.run(run(args))


if __name__ == "__main__":
    main()
