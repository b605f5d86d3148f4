#!/usr/bin/env python3
"""
AppDynamics Agent Control - Terminal UI Components
Banners, status lines and prompts for the management CLI.
"""

import os
import sys
import shutil


# --- Non-interactive mode support ---
_NON_INTERACTIVE = not sys.stdin.isatty()


def safe_input(prompt='', default=''):
    """Input that returns default in non-interactive mode or on EOFError."""
    if _NON_INTERACTIVE:
        return default
    try:
        return input(prompt)
    except (EOFError, OSError):
        return default


# Colors
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    RED = '\033[31m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    BLUE = '\033[34m'
    MAGENTA = '\033[35m'
    CYAN = '\033[36m'
    BRIGHT_WHITE = '\033[97m'

# Disable colors if not a TTY or NO_COLOR is set
if not sys.stdout.isatty() or os.environ.get('NO_COLOR'):
    for attr in dir(Colors):
        if not attr.startswith('_'):
            setattr(Colors, attr, '')

C = Colors  # Short alias


class TUI:
    """Terminal UI helper class."""

    BANNER_H = '='

    CHECK = '✓'
    CROSS = '✗'
    WARNING = '⚠'
    TRIANGLE = '▶'

    def _width(self) -> int:
        return min(79, shutil.get_terminal_size().columns - 1)

    def banner(self, title: str):
        """Display an operation banner."""
        line = self.BANNER_H * self._width()
        print()
        print(f"{C.MAGENTA}{line}{C.RESET}")
        print(f"  {C.BOLD}{title}{C.RESET}")
        print(f"{C.MAGENTA}{line}{C.RESET}")
        print()

    def section(self, title: str):
        """Display a section header."""
        print()
        print(f"{C.CYAN}{title}:{C.RESET}")

    def success(self, message: str):
        print(f"{C.GREEN}{self.CHECK}{C.RESET} {message}")

    def error(self, message: str):
        print(f"{C.RED}{self.CROSS}{C.RESET} {message}")

    def warning(self, message: str):
        print(f"{C.YELLOW}{self.WARNING}{C.RESET} {message}")

    def status(self, label: str, ok: bool = None):
        """Display a check/cross status line."""
        if ok is True:
            mark = f"{C.GREEN}{self.CHECK}{C.RESET}"
        elif ok is False:
            mark = f"{C.RED}{self.CROSS}{C.RESET}"
        else:
            mark = f"{C.DIM}-{C.RESET}"
        print(f"  {mark} {label}")

    def keyvalue(self, items: dict):
        """Display key-value pairs."""
        if not items:
            return
        max_key = max(len(k) for k in items.keys())
        for key, value in items.items():
            print(f"  {C.CYAN}{key:<{max_key}}{C.RESET}  {value}")

    def confirm(self, message: str) -> bool:
        """Ask an explicit yes/no question. Only yes/y continues."""
        response = safe_input(f"{message} (yes/no): ").strip().lower()
        return response in ('yes', 'y')

    def input(self, prompt: str, default: str = None) -> str:
        """Get user input with optional default."""
        if default:
            display = f"{prompt} [{default}]: "
        else:
            display = f"{prompt}: "

        response = safe_input(f"{C.BRIGHT_WHITE}{self.TRIANGLE}{C.RESET} {display}").strip()
        return response or default or ""


# Singleton instance
tui = TUI()


# --- Unicode/ASCII fallback detection ---
def _can_encode_unicode():
    """Check if stdout can encode the symbol characters we use."""
    try:
        encoding = getattr(sys.stdout, 'encoding', '') or ''
        if encoding.lower().replace('-', '') in ('utf8', 'utf16', 'utf32'):
            return True
        test = '✓✗⚠▶'
        test.encode(encoding)
        return True
    except (UnicodeEncodeError, LookupError):
        return False


if not _can_encode_unicode():
    TUI.CHECK = '[OK]'
    TUI.CROSS = '[X]'
    TUI.WARNING = '[!]'
    TUI.TRIANGLE = '>'
