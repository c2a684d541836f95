"""
Log viewer model: the state machine behind `octo logs`.

The viewer owns a ring buffer of formatted lines, the filtered view over it
and the scroll position. It is driven entirely by messages; update() mutates
state and may return a command, a zero-argument callable the host runs on a
worker thread. Whatever the command returns is the next message to feed
back into update(). No state changes outside update().

Messages:
  - Key(key): "up", "down", "enter", "escape", "backspace", "ctrl+r" or a
    single printable character
  - WindowSize(width, height)
  - InitialLogs(entries, err): result of the initial tail fetch
  - StreamLog(entry) / StreamErr(err): live stream item / end of stream
  - ExportDone(path, count, err)
  - ClearStatus(seq): expiry of the status message numbered `seq`
  - Quit()

Keys (normal mode):
  up/k down/j   scroll one line
  g / G         top / bottom (G also resumes following)
  f             toggle following
  /             plain-text filter, ctrl+r regex filter
  e             export the buffer to ~/.octo/logs/{container_id}.log
  q             quit; escape clears an applied filter, otherwise quits
"""

import os
import re
import time
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Pattern, Tuple

from .errors import OctoError
from .model import LogEntry
from .ringbuffer import DEFAULT_CAPACITY, RingBuffer

logger = logging.getLogger(__name__)

INITIAL_TAIL = 500
STATUS_SECONDS = 3.0
RESERVED_ROWS = 7  # header, rule, truncation banner, filter bar, status, rule, footer
MIN_VIEWPORT = 5

FOOTER = "↑↓/jk: scroll | g/G: top/bottom | f: follow | /: filter | ctrl+r: regex | e: export | q: back"

Command = Callable[[], Any]


@dataclass
class Key:
    key: str


@dataclass
class WindowSize:
    width: int
    height: int


@dataclass
class InitialLogs:
    entries: List[LogEntry] = field(default_factory=list)
    err: Optional[Exception] = None


@dataclass
class StreamLog:
    entry: LogEntry


@dataclass
class StreamErr:
    err: Optional[Exception] = None


@dataclass
class ExportDone:
    path: str = ""
    count: int = 0
    err: Optional[Exception] = None


@dataclass
class ClearStatus:
    seq: int


@dataclass
class Quit:
    pass


def _clear_after(seq: int, delay: float) -> Command:
    def cmd() -> ClearStatus:
        time.sleep(delay)
        return ClearStatus(seq)
    return cmd


class LogViewer:
    """Scrollable, filterable, following view of one container's logs."""

    def __init__(self, service, container_id: str, container_name: str,
                 capacity: int = DEFAULT_CAPACITY, tail: int = INITIAL_TAIL,
                 export_dir: Optional[Path] = None):
        self.service = service
        self.container_id = container_id
        self.container_name = container_name
        self.tail = tail
        self.export_dir = Path(export_dir) if export_dir else None

        self.buffer = RingBuffer(capacity)
        self.view_lines: List[str] = []
        self.offset = 0
        self.width = 0
        self.height = 0
        self.following = True

        self.filtering = False
        self.filter_text = ""
        self.using_regex = False
        self.compiled_regex: Optional[Pattern] = None
        self._saved_filter: Tuple[str, bool, Optional[Pattern]] = ("", False, None)

        self.err: Optional[Exception] = None
        self.status_message = ""
        self.truncation_warning = ""
        self.done = False

        self._status_seq = 0
        self._stream = None

    # --- Commands ---

    def init(self) -> Command:
        """Command for the initial fetch of the last `tail` lines."""
        def fetch() -> InitialLogs:
            try:
                return InitialLogs(self.service.get_container_logs(self.container_id, tail=self.tail))
            except OctoError as e:
                return InitialLogs([], err=e)
        return fetch

    def _read_next(self) -> Optional[Command]:
        stream = self._stream
        if stream is None:
            return None

        def read() -> Any:
            entry = stream.get()
            if entry is None:
                return StreamErr(stream.error())
            return StreamLog(entry)
        return read

    def _export(self) -> Command:
        lines = self.buffer.lines()
        directory = self.export_dir or Path.home() / ".octo" / "logs"
        path = directory / f"{self.container_id}.log"

        def export() -> ExportDone:
            try:
                os.makedirs(directory, mode=0o755, exist_ok=True)
                with open(path, "w", encoding="utf-8") as f:
                    for line in lines:
                        f.write(line + "\n")
            except OSError as e:
                logger.error(f"Log export to {path} failed: {e}")
                return ExportDone(str(path), 0, err=e)
            logger.info(f"Exported {len(lines)} log lines to {path}")
            return ExportDone(str(path), len(lines))
        return export

    def _set_status(self, message: str) -> Command:
        self._status_seq += 1
        self.status_message = message
        return _clear_after(self._status_seq, STATUS_SECONDS)

    def _stop_stream(self) -> None:
        if self._stream is not None:
            self._stream.cancel()
            self._stream = None

    # --- View maintenance ---

    def viewport_height(self) -> int:
        return max(MIN_VIEWPORT, self.height - RESERVED_ROWS)

    def max_offset(self) -> int:
        return max(0, len(self.view_lines) - self.viewport_height())

    def _clamp(self) -> None:
        self.offset = min(max(self.offset, 0), self.max_offset())

    def scroll_to_bottom(self) -> None:
        self.offset = self.max_offset()

    def refresh_view(self) -> None:
        """Rebuild view_lines from the buffer with the current filter."""
        lines = self.buffer.lines()
        if self.using_regex:
            if self.compiled_regex is not None:
                lines = [line for line in lines if self.compiled_regex.search(line)]
        elif self.filter_text:
            query = self.filter_text.lower()
            lines = [line for line in lines if query in line.lower()]
        self.view_lines = lines
        self._clamp()

    def _update_truncation_warning(self) -> None:
        dropped = self.buffer.dropped
        if dropped > 0:
            self.truncation_warning = f"Logs truncated: oldest {dropped} lines dropped"
        else:
            self.truncation_warning = ""

    def _ingest(self, lines: List[str]) -> None:
        self.buffer.append_batch(lines)
        self.refresh_view()
        self._update_truncation_warning()
        if self.following:
            self.scroll_to_bottom()

    def _clear_filter(self) -> None:
        self.filter_text = ""
        self.using_regex = False
        self.compiled_regex = None
        self.refresh_view()
        self.offset = 0
        if self.max_offset() > 0:
            self.following = False

    # --- Update ---

    def update(self, msg: Any) -> Optional[Command]:
        if isinstance(msg, Key):
            return self._handle_key(msg.key)

        if isinstance(msg, WindowSize):
            self.width, self.height = msg.width, msg.height
            self._clamp()
            if self.following:
                self.scroll_to_bottom()
            return None

        if isinstance(msg, InitialLogs):
            if msg.err is not None:
                self.err = msg.err
                return None
            self._ingest([entry.format() for entry in msg.entries])
            if self.done:
                return None
            self._stream = self.service.stream_container_logs(self.container_id)
            return self._read_next()

        if isinstance(msg, StreamLog):
            self._ingest([msg.entry.format()])
            return self._read_next()

        if isinstance(msg, StreamErr):
            self._stream = None
            if msg.err is not None:
                return self._set_status(f"Stream error: {msg.err}")
            return None

        if isinstance(msg, ExportDone):
            if msg.err is not None:
                return self._set_status(f"Export error: {msg.err}")
            return self._set_status(f"Exported {msg.count} lines to {msg.path}")

        if isinstance(msg, ClearStatus):
            if msg.seq == self._status_seq:
                self.status_message = ""
            return None

        if isinstance(msg, Quit):
            self._stop_stream()
            self.done = True
            return None

        return None

    def _handle_key(self, key: str) -> Optional[Command]:
        if key == "esc":
            key = "escape"
        if self.filtering:
            return self._handle_filter_key(key)
        return self._handle_normal_key(key)

    def _handle_filter_key(self, key: str) -> Optional[Command]:
        if key == "enter":
            self.filtering = False
            if self.using_regex and self.filter_text:
                try:
                    self.compiled_regex = re.compile(self.filter_text)
                except re.error as e:
                    self.compiled_regex = None
                    previous_text, previous_regex, _ = self._saved_filter
                    if previous_regex:
                        # a regex filter that is not compiled is no filter
                        previous_text, previous_regex = "", False
                    self.filter_text, self.using_regex = previous_text, previous_regex
                    self.refresh_view()
                    return self._set_status(f"Invalid regex: {e}")
            self.refresh_view()
            if self.following:
                self.scroll_to_bottom()
            return None

        if key == "escape":
            self.filtering = False
            self._clear_filter()
            return None

        if key in ("backspace", "ctrl+h"):
            self.filter_text = self.filter_text[:-1]
            return None

        if len(key) == 1 and key.isprintable():
            self.filter_text += key
        return None

    def _start_filter(self, regex: bool) -> None:
        self._saved_filter = (self.filter_text, self.using_regex, self.compiled_regex)
        self.filtering = True
        self.filter_text = ""
        self.using_regex = regex
        self.compiled_regex = None

    def _handle_normal_key(self, key: str) -> Optional[Command]:
        if key in ("up", "k"):
            if self.offset > 0:
                self.offset -= 1
            self.following = False
        elif key in ("down", "j"):
            if self.offset < self.max_offset():
                self.offset += 1
            if self.offset >= self.max_offset():
                self.following = True
        elif key == "g":
            self.offset = 0
            self.following = False
        elif key == "G":
            self.scroll_to_bottom()
            self.following = True
        elif key == "f":
            self.following = not self.following
            if self.following:
                self.scroll_to_bottom()
        elif key == "/":
            self._start_filter(regex=False)
        elif key == "ctrl+r":
            self._start_filter(regex=True)
        elif key == "e":
            return self._export()
        elif key == "escape" and (self.filter_text or self.compiled_regex is not None):
            self._clear_filter()
        elif key in ("q", "escape"):
            self._stop_stream()
            self.done = True
        return None

    # --- Rendering ---

    def render_rows(self) -> List[Tuple[str, str]]:
        """Rows of (style, text); style is one of title, rule, warning, info, error, normal, help."""
        if self.err is not None:
            return [("error", f"Error: {self.err}"), ("normal", ""), ("help", "Press 'q' to quit.")]

        rows: List[Tuple[str, str]] = []
        follow = " [FOLLOWING]" if self.following else ""
        rows.append(("title", f"Logs: {self.container_name}{follow}"))
        rows.append(("rule", "─" * 60))

        if self.truncation_warning:
            rows.append(("warning", f"⚠ {self.truncation_warning}"))

        if self.filtering or self.filter_text:
            bar = f"Filter: {self.filter_text}"
            if self.filtering:
                bar += "█"
            if self.using_regex:
                bar += " [regex]"
            rows.append(("info", bar))

        if not self.view_lines:
            rows.append(("info", "  No log entries"))
        else:
            end = min(self.offset + self.viewport_height(), len(self.view_lines))
            for line in self.view_lines[self.offset:end]:
                rows.append(("error" if "  stderr  " in line else "normal", line))

        if self.status_message:
            rows.append(("normal", ""))
            rows.append(("info", f"  {self.status_message}"))

        rows.append(("rule", "─" * 60))
        rows.append(("help", FOOTER))
        return rows

    def view(self) -> str:
        return "\n".join(text for _, text in self.render_rows())
