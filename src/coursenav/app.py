# /coursenav/app.py
"""
Interactive terminal front end for CourseNav.
Renders each outcome as a numbered menu; picking a number echoes that item's
action token back, anything else is handled as a typed command.
"""
import sys

from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .api_server import open_catalog
from .config import METRICS_DIR, console
from .dispatcher import Dispatcher
from .metrics import MetricsCollector
from .results import (
    DirectoryPage,
    DocumentSelection,
    HelpPage,
    LibraryPage,
    NavigationPage,
    NoResults,
    Outcome,
    SearchPage,
    SearchPrompt,
    TooManyResults,
)

CONVERSATION_ID = "cli"
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


# --- UI & Formatting Functions ---

def display_welcome_banner():
    console.print(Panel(
        "[bold magenta]CourseNav - Academic Catalog Navigator[/bold magenta]",
        subtitle="[cyan]/start  /browse  /search <keyword>  /favorites  /history  /help  exit[/cyan]",
        expand=False
    ))


def menu_entries(outcome: Outcome) -> list[tuple[str, str]]:
    """(label, token) pairs offered by an outcome, in display order. Items without a token are not selectable."""
    entries: list[tuple[str, str | None]] = []
    if isinstance(outcome, SearchPage):
        entries.extend((f"[{hit.kind}] {hit.label}", hit.token) for hit in outcome.items)
        entries.append(("« Previous", outcome.previous_token))
        entries.append(("Next »", outcome.next_token))
        entries.extend((f"Filter: {item.label}", item.token) for item in outcome.filter_items)
    elif isinstance(outcome, NoResults):
        entries.extend((f"Filter: {item.label}", item.token) for item in outcome.filter_items)
    elif isinstance(outcome, LibraryPage):
        entries.extend((item.label, item.token) for item in outcome.items)
        entries.append(("« Previous", outcome.previous_token))
        entries.append(("Next »", outcome.next_token))
        entries.extend((item.label, item.token) for item in outcome.actions)
    else:
        payload = outcome.to_dict()
        entries.extend((item["label"], item["token"]) for item in payload.get("items", []))
        entries.append(("Back", getattr(outcome, "back_token", None)))
    return [(label, token) for label, token in entries if token]


def render_outcome(outcome: Outcome, entries: list[tuple[str, str]]):
    if isinstance(outcome, NavigationPage):
        title = outcome.breadcrumb or outcome.title
        body = outcome.description or f"{len(outcome.items)} option(s)"
        console.print(Panel(body, title=title, border_style="blue"))
    elif isinstance(outcome, DocumentSelection):
        console.print(Panel(
            f"[bold]{outcome.title}[/bold]\nType: {outcome.document_kind}\nChapter: {outcome.chapter or '-'}\n"
            f"File: {outcome.file_path or '-'}",
            title=outcome.breadcrumb or "Document",
            border_style="green",
        ))
    elif isinstance(outcome, SearchPage):
        counts = outcome.counts
        console.print(Panel(
            f"{outcome.total} result(s): {counts['courses']} course, {counts['chapters']} chapter, "
            f"{counts['resources']} resource\nPage {outcome.page + 1} of {outcome.total_pages}",
            title=f"Search: {outcome.keyword} ({outcome.filter.value})",
            border_style="cyan",
        ))
    elif isinstance(outcome, TooManyResults):
        console.print(Panel(
            f"[yellow]{outcome.total} matches for '{outcome.keyword}' (limit {outcome.limit}). "
            f"Try a more specific keyword.[/yellow]",
            title="Warning",
        ))
    elif isinstance(outcome, NoResults):
        console.print(Panel(f"[yellow]No results for '{outcome.keyword}'.[/yellow]", title="Search"))
    elif isinstance(outcome, SearchPrompt):
        console.print(f"[cyan]Search the catalog for '{outcome.text}'?[/cyan]")
    elif isinstance(outcome, LibraryPage):
        title = "Favorites" if outcome.list_name == "favorites" else "History"
        body = (
            f"{outcome.total} document(s)\nPage {outcome.page + 1} of {outcome.total_pages}"
            if outcome.total else f"No {outcome.list_name} yet."
        )
        console.print(Panel(body, title=title, border_style="magenta"))
    elif isinstance(outcome, DirectoryPage):
        table = Table(title="All departments", show_header=False)
        for section in outcome.sections:
            table.add_row(f"[bold]{section.title}[/bold]", "\n".join(section.entries) or "-")
        console.print(table)
    elif isinstance(outcome, HelpPage):
        console.print(Panel(outcome.text, title="Help", border_style="cyan"))
    else:
        message = getattr(outcome, "message", "")
        if message:
            console.print(f"[red]{message}[/red]")

    if entries:
        table = Table(show_header=False, box=None)
        for index, (label, _) in enumerate(entries, start=1):
            table.add_row(f"[green]{index}.[/green]", label)
        console.print(table)


def main():
    """Main application loop."""
    display_welcome_banner()
    store = open_catalog()
    dispatcher = Dispatcher(store, metrics=MetricsCollector(METRICS_DIR))
    outcome = dispatcher.handle_text(CONVERSATION_ID, "/start")

    try:
        while True:
            try:
                entries = menu_entries(outcome)
                render_outcome(outcome, entries)
                answer = Prompt.ask("[bold cyan]Choose a number or type a command[/bold cyan]").strip()
                if answer.lower() in EXIT_COMMANDS:
                    break
                if answer.isdigit() and 1 <= int(answer) <= len(entries):
                    outcome = dispatcher.handle_token(CONVERSATION_ID, entries[int(answer) - 1][1])
                else:
                    outcome = dispatcher.handle_text(CONVERSATION_ID, answer)
            except KeyboardInterrupt:
                break
    finally:
        store.close()

    console.print("\n[bold magenta]Goodbye![/bold magenta]")
    sys.exit(0)


if __name__ == "__main__":
    main()
