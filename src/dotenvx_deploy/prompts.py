"""Interactive prompts. Everything here reads from the terminal; the choices themselves live in decisions.py."""

import typer
from rich.console import Console

console = Console()


def confirm(message: str, default: bool = True) -> bool:
    return typer.confirm(message, default=default)


def _parse_indexes(answer: str, count: int) -> list[int] | None:
    indexes = []
    for part in answer.replace(" ", "").split(","):
        if not part:
            continue
        if not part.isdigit() or not 1 <= int(part) <= count:
            return None
        if int(part) - 1 not in indexes:
            indexes.append(int(part) - 1)
    return indexes


def select_many(message: str, choices: list[str], checked: list[bool], require_one: bool = False) -> list[int]:
    """Shows a numbered list and returns the indexes picked.

    The user answers with comma-separated numbers; an empty answer keeps the
    pre-checked entries, and `none` picks nothing.
    """
    console.print(f"[bold]{message}[/]")
    for i, (choice, is_checked) in enumerate(zip(choices, checked, strict=True), start=1):
        marker = "[green]x[/]" if is_checked else " "
        console.print(f"  [{marker}] {i}. {choice}", highlight=False)

    default = ",".join(str(i) for i, c in enumerate(checked, start=1) if c) or "none"
    while True:
        answer = typer.prompt("Numbers (comma-separated, 'none' for none)", default=default)
        indexes = [] if answer.strip().lower() == "none" else _parse_indexes(answer, len(choices))
        if indexes is None:
            console.print("[yellow]Please enter numbers from the list.[/]")
            continue
        if require_one and not indexes:
            console.print("[yellow]Select at least one entry.[/]")
            continue
        return indexes


def select_one(message: str, choices: list[str], default: int = 0) -> int:
    console.print(f"[bold]{message}[/]")
    for i, choice in enumerate(choices, start=1):
        console.print(f"  {i}. {choice}", highlight=False)
    while True:
        answer = typer.prompt("Number", default=str(default + 1))
        indexes = _parse_indexes(answer, len(choices))
        if indexes and len(indexes) == 1:
            return indexes[0]
        console.print("[yellow]Please enter one number from the list.[/]")


def ask(message: str, hide_input: bool = False) -> str:
    while True:
        value = typer.prompt(message, hide_input=hide_input, default="", show_default=False)
        if value:
            return value
        console.print(f"[yellow]{message} is required.[/]")


def edit_text(initial: str) -> str:
    """Opens $EDITOR on ``initial``; an unchanged or closed editor keeps ``initial``."""
    edited = typer.edit(initial, extension=".env")
    return edited if edited is not None else initial
