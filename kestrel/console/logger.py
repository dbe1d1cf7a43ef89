"""Rich-based logger with kestrel theming.

Device bring-up, parity checks and benchmarks print through this logger:
- Semantic colors (cyan=info, green=success, amber=warning, red=error)
- Structured output (tables, key-value pairs, metrics)
- A fatal() helper so a host can report a device fault and exit cleanly
"""
from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme


KESTREL_THEME = Theme(
    {
        "info": "bold #7dcfff",
        "success": "bold #9ece6a",
        "warning": "bold #e0af68",
        "error": "bold #f7768e",
        "highlight": "bold #bb9af7",
        "muted": "dim #565f89",
        "metric": "#7aa2f7",
        "step": "#ff9e64",
    }
)


class Logger:
    """Unified logging interface with rich console output.

    Wraps Rich Console to provide semantic log levels and structured
    data display with consistent theming.
    """

    def __init__(self) -> None:
        """Initialize with the kestrel theme."""
        self.console = Console(theme=KESTREL_THEME)

    # ─────────────────────────────────────────────────────────────────────
    # Basic Logging
    # ─────────────────────────────────────────────────────────────────────

    def info(self, message: str) -> None:
        """Log an informational message (cyan ℹ)."""
        self.console.print(f"[info]ℹ[/info] {message}")

    def success(self, message: str) -> None:
        """Log a success message (green ✓)."""
        self.console.print(f"[success]✓[/success] {message}")

    def warning(self, message: str) -> None:
        """Log a warning message (amber ⚠)."""
        self.console.print(f"[warning]⚠[/warning] {message}")

    def error(self, message: str) -> None:
        """Log an error message (red ✗)."""
        self.console.print(f"[error]✗[/error] {message}")

    def fatal(self, exc: BaseException) -> None:
        """Report an unrecoverable error in a bordered panel.

        Hosts call this from their top-level handler before exiting.
        """
        self.console.print(
            Panel(
                f"{type(exc).__name__}: {exc}",
                title="fatal",
                border_style="error",
            )
        )

    # ─────────────────────────────────────────────────────────────────────
    # Structured Output
    # ─────────────────────────────────────────────────────────────────────

    def header(self, title: str, subtitle: str | None = None) -> None:
        """Print a prominent section header."""
        header_text = Text()
        header_text.append("━" * 3 + " ", style="muted")
        header_text.append(title, style="highlight")
        if subtitle:
            header_text.append(f" • {subtitle}", style="muted")
        header_text.append(" " + "━" * 40, style="muted")
        self.console.print()
        self.console.print(header_text)
        self.console.print()

    def subheader(self, text: str) -> None:
        """Print a subtle subheader for subsections."""
        self.console.print(f"[muted]──[/muted] [highlight]{text}[/highlight]")

    def table(
        self,
        title: str | None = None,
        columns: list[str] | None = None,
        rows: list[list[str]] | None = None,
    ) -> Table:
        """Create and optionally populate a styled table.

        If columns and rows are provided, prints immediately. Otherwise
        returns the Table for manual population.
        """
        table = Table(
            title=title,
            title_style="highlight",
            header_style="info",
            border_style="muted",
            row_styles=["", "dim"],
        )

        if columns and rows:
            for col in columns:
                table.add_column(col)
            for row in rows:
                table.add_row(*row)
            self.console.print(table)

        return table

    def key_value(self, data: dict[str, Any], title: str | None = None) -> None:
        """Display key-value pairs in a clean format."""
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="muted")
        table.add_column("Value", style="metric")

        for key, value in data.items():
            table.add_row(f"{key}:", str(value))

        if title:
            self.subheader(title)
        self.console.print(table)

    def metric(self, name: str, value: float | int | str, unit: str = "") -> None:
        """Display a single metric with formatting.

        Floats are formatted to 4 decimal places.
        """
        if isinstance(value, float):
            formatted = f"{value:.4f}"
        else:
            formatted = str(value)
        self.console.print(
            f"  [muted]{name}:[/muted] [metric]{formatted}[/metric]{unit}"
        )

    def step(self, current: int, total: int | None = None, message: str = "") -> None:
        """Display a step indicator for multi-phase operations."""
        if total:
            prefix = f"[step][{current}/{total}][/step]"
        else:
            prefix = f"[step][{current}][/step]"
        self.console.print(f"{prefix} {message}")


# ─────────────────────────────────────────────────────────────────────────────
# Module-Level Singleton
# ─────────────────────────────────────────────────────────────────────────────

_logger: Logger | None = None


def get_logger() -> Logger:
    """Get or create the singleton Logger instance."""
    global _logger
    if _logger is None:
        _logger = Logger()
    return _logger
