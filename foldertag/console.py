"""Terminal output for foldertag."""

from __future__ import annotations

import sys


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    GRAY = "\033[90m"

    @classmethod
    def disable(cls) -> None:
        """Disable colors for non-TTY output."""
        cls.RESET = ""
        cls.BOLD = ""
        cls.DIM = ""
        cls.RED = ""
        cls.GREEN = ""
        cls.YELLOW = ""
        cls.BLUE = ""
        cls.CYAN = ""
        cls.GRAY = ""


class Logger:
    """Logger with colored output and verbosity levels.

    In JSON mode only errors are printed (to stderr), so stdout carries
    nothing but the JSON result.
    """

    def __init__(self, verbose: bool = False, quiet: bool = False, json_output: bool = False) -> None:
        self.verbose = verbose
        self.quiet = quiet
        self.json_output = json_output
        if not sys.stdout.isatty() or json_output:
            Colors.disable()

    @property
    def silent(self) -> bool:
        return self.quiet or self.json_output

    def info(self, message: str) -> None:
        """Print info message."""
        if not self.silent:
            print(f"{Colors.BLUE}ℹ{Colors.RESET} {message}")

    def success(self, message: str) -> None:
        """Print success message."""
        if not self.silent:
            print(f"{Colors.GREEN}✓{Colors.RESET} {message}")

    def warn(self, message: str) -> None:
        """Print warning message."""
        if not self.silent:
            print(f"{Colors.YELLOW}⚠{Colors.RESET} {message}")

    def error(self, message: str) -> None:
        """Print error message."""
        print(f"{Colors.RED}✗{Colors.RESET} {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        """Print debug message (verbose only)."""
        if self.verbose and not self.silent:
            print(f"{Colors.GRAY}  {message}{Colors.RESET}")

    def header(self, message: str) -> None:
        """Print header message."""
        if not self.silent:
            print(f"\n{Colors.BOLD}=== {message} ==={Colors.RESET}")

    def progress(self, label: str, done: int, total: int) -> None:
        """Print a progress line for long batches."""
        if not self.silent:
            print(f"{Colors.DIM}{label}: {done}/{total}...{Colors.RESET}")

    def summary(self, message: str, failures: int = 0) -> None:
        """Print the closing line of a mutating command."""
        if failures:
            self.warn(f"{message}. {failures} error{'s' if failures != 1 else ''}.")
        else:
            self.success(message)
