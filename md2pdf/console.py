"""Colored console output shared by every pipeline stage."""

import threading

from colorama import init, Fore, Style

# Initialize colorama for cross-platform colored output
init(autoreset=True)


class ConsoleLogger:
    """Prints tagged, colored log lines. Safe to call from worker threads."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self._lock = threading.Lock()

    def debug(self, message: str) -> None:
        """Log debug message (only if verbose mode is enabled)."""
        if self.verbose:
            self._emit(f"{Fore.CYAN}[DEBUG]{Style.RESET_ALL} {message}")

    def info(self, message: str) -> None:
        self._emit(f"{Fore.GREEN}[INFO]{Style.RESET_ALL} {message}")

    def warning(self, message: str) -> None:
        self._emit(f"{Fore.YELLOW}[WARNING]{Style.RESET_ALL} {message}")

    def error(self, message: str) -> None:
        self._emit(f"{Fore.RED}[ERROR]{Style.RESET_ALL} {message}")

    def success(self, message: str) -> None:
        self._emit(f"{Fore.GREEN}[OK]{Style.RESET_ALL} {message}")

    def _emit(self, line: str) -> None:
        with self._lock:
            print(line)
