"""Output formatting utilities using Rich."""

import json
from enum import Enum
from typing import Any

import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

console = Console()
error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Supported output formats."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"
    RAW = "raw"


class OutputFormatter:
    """Handles output formatting for CLI commands."""

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TABLE,
        color: bool = True,
        quiet: bool = False,
    ):
        self.format = format
        self.color = color
        self.quiet = quiet
        self._console = Console(force_terminal=color, no_color=not color)

    def print(self, message: str, style: str | None = None) -> None:
        """Print a message to stdout."""
        if self.quiet:
            return
        self._console.print(message, style=style)

    def print_error(self, message: str) -> None:
        """Print an error message to stderr."""
        error_console.print(f"[red]Error:[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        if self.quiet:
            return
        self._console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        if self.quiet:
            return
        self._console.print(f"[green]✓[/green] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        if self.quiet:
            return
        self._console.print(f"[blue]ℹ[/blue] {message}")

    def print_data(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
        styles: dict[str, str] | None = None,
    ) -> None:
        """Print data in the configured format.

        ``styles`` maps a cell value to a Rich style and only affects tables.
        """
        if self.format == OutputFormat.JSON:
            self._print_json(data)
        elif self.format == OutputFormat.YAML:
            self._print_yaml(data)
        elif self.format == OutputFormat.RAW:
            self._print_raw(data)
        else:
            self._print_table(data, headers, title, styles or {})

    def _print_json(self, data: Any) -> None:
        """Print data as JSON."""
        json_str = json.dumps(data, indent=2, default=str)
        if self.color:
            self._console.print(Syntax(json_str, "json", theme="monokai"))
        else:
            print(json_str)

    def _print_yaml(self, data: Any) -> None:
        """Print data as YAML."""
        yaml_str = yaml.safe_dump(
            json.loads(json.dumps(data, default=str)),
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )
        if self.color:
            self._console.print(Syntax(yaml_str, "yaml", theme="monokai"))
        else:
            print(yaml_str)

    def _print_raw(self, data: Any) -> None:
        """Print raw data."""
        if isinstance(data, list):
            for item in data:
                print(item)
        elif isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}: {value}")
        else:
            print(data)

    def _styled(self, value: Any, styles: dict[str, str]) -> str:
        text = str(value)
        style = styles.get(text)
        if style and self.color:
            return f"[{style}]{text}[/{style}]"
        return text

    def _print_table(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None,
        title: str | None,
        styles: dict[str, str],
    ) -> None:
        """Print data as a formatted table."""
        if isinstance(data, dict):
            table = Table(title=title, show_header=True, header_style="bold cyan")
            table.add_column("Field", style="dim")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(str(key), self._styled(value, styles))
            self._console.print(table)
        elif isinstance(data, list) and len(data) > 0:
            if headers is None:
                headers = list(data[0].keys())

            table = Table(title=title, show_header=True, header_style="bold cyan")
            for header in headers:
                table.add_column(header)

            for row in data:
                table.add_row(*[self._styled(row.get(h, ""), styles) for h in headers])

            self._console.print(table)
        else:
            self._console.print("[dim]No data to display[/dim]")

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask for confirmation."""
        if self.quiet:
            return default

        suffix = " [Y/n]" if default else " [y/N]"
        self._console.print(f"{message}{suffix}", end=" ")

        try:
            response = input().strip().lower()
            if not response:
                return default
            return response in ("y", "yes")
        except (EOFError, KeyboardInterrupt):
            return False


def format_cost(amount: float, currency: str = "USD") -> str:
    """Format cost with currency symbol."""
    symbols = {"USD": "$", "EUR": "€", "GBP": "£"}
    symbol = symbols.get(currency, currency)
    return f"{symbol}{amount:,.2f}"


def format_percent(value: float, places: int = 1) -> str:
    """Format a 0-100 percentage."""
    return f"{value:.{places}f}%"
