"""
Rich Output Utilities
=====================

Terminal output for the governor CLI using the Rich library: a themed
console, status lines, tables, panels and Rich-backed logging.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class GovernorColors:
    """Governor color palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # warm accent
    cool: str = "#22D3EE"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def governor_theme(colors: GovernorColors = GovernorColors()) -> Theme:
    """
    Rich Theme for the governor CLI.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="gv.ok")
    """
    return Theme(
        {
            "gv.border": f"{colors.cool}",
            "gv.accent": f"bold {colors.accent}",
            "gv.muted": f"{colors.dim}",
            "gv.text": f"{colors.ink}",

            # Status
            "gv.ok": f"bold {colors.ok}",
            "gv.warn": f"bold {colors.warn}",
            "gv.err": f"bold {colors.err}",
            "gv.info": f"{colors.cool}",

            # Data display
            "gv.key": f"{colors.steel}",
            "gv.value": f"{colors.ink}",
            "gv.number": f"bold {colors.accent}",
            "gv.timestamp": f"{colors.dim}",

            # Autonomy levels
            "gv.level.paused": f"bold {colors.err}",
            "gv.level.onboarding": f"{colors.dim}",
            "gv.level.shadow_mode": f"bold {colors.steel}",
            "gv.level.supervised": f"bold {colors.cool}",
            "gv.level.autonomous": f"bold {colors.ok}",

            "gv.table.header": f"bold {colors.cool}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the Unicode icons we print."""
    if os.name == 'nt':
        try:
            encoding = sys.stdout.encoding or 'utf-8'
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "arrow_up": "↑",
    "arrow_down": "↓",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "*",
    "arrow_right": "->",
    "arrow_up": "^",
    "arrow_down": "v",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=governor_theme())


# =============================================================================
# Status Messages
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[gv.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[gv.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[gv.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[gv.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    console.print(f"[gv.muted]{message}[/]")


# =============================================================================
# Headers & Data Display
# =============================================================================

def print_header(title: str, style: str = "gv.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def level_markup(level_name: str) -> str:
    """Wrap an autonomy level name in its theme style."""
    return f"[gv.level.{level_name.lower()}]{level_name}[/]"


def print_key_value_table(
    data: Dict[str, Any],
    *,
    title: Optional[str] = None,
    border_style: str = "gv.border",
) -> None:
    """Print multiple key-value pairs in a clean table format."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="gv.key")
    table.add_column("Value", style="gv.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style=border_style))
    else:
        console.print(table)


def print_list(
    items: Sequence[str],
    *,
    numbered: bool = False,
    style: str = "gv.text",
    bullet_style: str = "gv.accent",
) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        if numbered:
            console.print(f"  [{bullet_style}]{i}.[/] [{style}]{item}[/]")
        else:
            console.print(f"  [{bullet_style}]{icon('bullet')}[/] [{style}]{item}[/]")


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
    border_style: str = "gv.border",
    header_style: str = "gv.table.header",
) -> Table:
    """Create a styled Rich Table with the governor theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style=header_style,
        border_style=border_style,
        title_style="gv.accent",
    )

    if columns:
        for col in columns:
            table.add_column(col)

    return table


def print_table(table: Table) -> None:
    console.print(table)


def print_error_panel(message: str, title: str = "Error") -> None:
    """Print an error panel with red border."""
    console.print(Panel(
        f"[gv.err]{icon('cross')} {message}[/]",
        title=f"[gv.err]{title}[/]",
        border_style="gv.err",
        padding=(1, 2),
    ))


@contextmanager
def spinner(message: str, *, style: str = "gv.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Reviewing tenant..."):
            await governor.review_tenant(tenant_id)
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich for log output.

    Usage:
        setup_rich_logging()
        logging.info("This will be pretty!")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
