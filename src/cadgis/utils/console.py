"""
Rich console shared by the command line commands.

Drawing workstations are often Windows boxes running the legacy console, so
box drawing falls back to ASCII there.
"""
import os
import sys

from rich.console import Console


def create_console() -> Console:
    """Console adapted to the current terminal (Windows legacy consoles get ASCII boxes)."""
    is_interactive = sys.stdout.isatty()

    if os.name == "nt":
        try:
            if hasattr(sys.stdout, "reconfigure"):
                sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        except (AttributeError, OSError):
            pass

        # Windows Terminal and VS Code handle Unicode
        if os.environ.get("WT_SESSION") or os.environ.get("TERM_PROGRAM") == "vscode":
            return Console(force_terminal=True if is_interactive else None, legacy_windows=False)
        return Console(
            force_terminal=True if is_interactive else None,
            legacy_windows=True,
            safe_box=True,
        )

    return Console(force_terminal=True if is_interactive else None)


console = create_console()
