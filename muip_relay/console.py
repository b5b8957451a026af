"""Operator console: log mirroring and line-based command entry.

Log output is mirrored through :class:`LogBroadcaster`, a logging handler
that owns an explicit list of observers. It is attached to the root logger
once, when logging is configured; WebSocket clients subscribe and
unsubscribe at runtime.

Command lines use the form ``command:'<text>' uid:'<uid>'`` and may arrive
from stdin or from a WebSocket client.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, TextIO

from .core.models import CommandResult
from .errors import RelayError
from .pipeline import CommandPipeline

LOGGER = logging.getLogger(__name__)

LogObserver = Callable[[str], None]

_COMMAND_PATTERN = re.compile(r"command:'([^']+)'")
_UID_PATTERN = re.compile(r"uid:'([^']+)'")

USAGE = "Invalid input. Use format: command:'command_text' uid:'uid_text'"


class LogBroadcaster(logging.Handler):
    """Fan formatted log records out to registered observers."""

    def __init__(self, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._observers: List[LogObserver] = []
        self._observers_lock = threading.Lock()

    def subscribe(self, observer: LogObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                raise ValueError("Observer already registered")
            self._observers.append(observer)

    def unsubscribe(self, observer: LogObserver) -> None:
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def emit(self, record: logging.LogRecord) -> None:
        with self._observers_lock:
            observers = list(self._observers)
        if not observers:
            return

        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return

        failed: List[LogObserver] = []
        for observer in observers:
            try:
                observer(line)
            except Exception:
                failed.append(observer)

        for observer in failed:
            self.unsubscribe(observer)
        if failed:
            LOGGER.warning("Dropped %d failing log observer(s)", len(failed))


@dataclass(frozen=True, slots=True)
class ConsoleCommand:
    command: str
    uid: str


def parse_console_line(line: str) -> Optional[ConsoleCommand]:
    """Extract ``command:'...'`` and ``uid:'...'`` from a console line."""

    command_match = _COMMAND_PATTERN.search(line)
    uid_match = _UID_PATTERN.search(line)
    if command_match is None or uid_match is None:
        return None
    return ConsoleCommand(command=command_match.group(1), uid=uid_match.group(1))


class ConsoleRunner:
    """Execute console command lines through the command pipeline."""

    def __init__(self, pipeline: CommandPipeline, *, key_type: Optional[str] = None) -> None:
        self._pipeline = pipeline
        self._key_type = key_type

    async def handle_line(self, line: str) -> Optional[CommandResult]:
        text = line.strip()
        if not text:
            return None

        parsed = parse_console_line(text)
        if parsed is None:
            LOGGER.error(USAGE)
            return None

        LOGGER.info(
            "Processing console command for uid %s: %s", parsed.uid, parsed.command
        )
        try:
            result = await self._pipeline.run(self._key_type, parsed.uid, parsed.command)
        except RelayError as exc:
            LOGGER.error("Console command execution error: %s", exc)
            return None
        except Exception as exc:
            LOGGER.error("Console command crashed: %s", exc, exc_info=True)
            return None

        if result.ok:
            LOGGER.info("%s", result.data.get("message", ""))
        else:
            LOGGER.error("Console command execution error: %s", result.error)
        return result


class StdinConsole:
    """Feed lines from a text stream (stdin by default) to a console runner.

    Reading happens on a daemon thread so a blocked ``readline`` never holds
    up event-loop shutdown; each line is handed back to the loop with
    ``run_coroutine_threadsafe``.
    """

    def __init__(self, runner: ConsoleRunner, *, stream: Optional[TextIO] = None) -> None:
        self._runner = runner
        self._stream = stream or sys.stdin
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._finished = asyncio.Event()

    async def start(self) -> None:
        if self._thread is not None:
            return

        self._loop = asyncio.get_running_loop()
        self._stop_event.clear()
        self._finished.clear()
        self._thread = threading.Thread(
            target=self._read_loop, name="muip-relay-stdin", daemon=True
        )
        self._thread.start()
        LOGGER.info("Console accepting commands on stdin")

    async def stop(self) -> None:
        self._stop_event.set()
        self._thread = None

    async def wait_closed(self) -> None:
        """Wait until the stream reaches EOF and every line was handled."""

        await self._finished.wait()

    def _read_loop(self) -> None:
        loop = self._loop
        assert loop is not None
        try:
            while not self._stop_event.is_set():
                line = self._stream.readline()
                if not line or loop.is_closed():
                    break
                future = asyncio.run_coroutine_threadsafe(
                    self._runner.handle_line(line), loop
                )
                try:
                    future.result()
                except Exception as exc:  # pragma: no cover - runner never raises
                    LOGGER.error("Console line failed: %s", exc)
        finally:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._finished.set)
