from __future__ import annotations

import logging
import sys
from typing import IO

from rich.console import Console
from rich.markup import escape

_LOGGER = logging.getLogger("promptdj.notify")


class Notifier:
    """Transient user-facing messages, the console stand-in for a toast."""

    def __init__(
        self,
        *,
        stream: IO[str] | None = None,
        enabled: bool | None = None,
        history_limit: int = 50,
    ) -> None:
        self._stream = stream or sys.stderr
        self._enabled = self._stream.isatty() if enabled is None else enabled
        self._console = Console(file=self._stream, highlight=False) if self._enabled else None
        self._history_limit = history_limit
        self.history: list[str] = []

    @property
    def last(self) -> str | None:
        return self.history[-1] if self.history else None

    def show(self, message: str) -> None:
        _LOGGER.info("notice: %s", message)
        self.history.append(message)
        del self.history[: -self._history_limit]
        if self._console is not None:
            self._console.print(f"[bold yellow]•[/] {escape(message)}")

    def error(self, context: str, exc: BaseException) -> None:
        detail = str(exc) or type(exc).__name__
        self.show(f"{context}: {detail}")
