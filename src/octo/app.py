"""Textual host for the log viewer."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.widgets import Static
from rich.text import Text

from .logviewer import Key, LogViewer, WindowSize

logger = logging.getLogger(__name__)

ROW_STYLES = {
    "title": "bold cyan",
    "rule": "dim",
    "warning": "bold yellow",
    "info": "cyan",
    "error": "red",
    "normal": "",
    "help": "dim italic",
}


def key_name(event: events.Key) -> str:
    """Printable keys by their character ("G", "/", " "), the rest by name ("ctrl+r")."""
    if event.is_printable and event.character:
        return event.character
    return event.key


class LogsApp(App[None]):
    TITLE = "octo logs"

    CSS = """
    Screen {
      layout: vertical;
    }

    #logs {
      height: 1fr;
      padding: 0 1;
      overflow: hidden;
    }
    """

    def __init__(self, viewer: LogViewer) -> None:
        super().__init__()
        self.viewer = viewer

    def compose(self) -> ComposeResult:
        yield Static("", id="logs")

    def on_mount(self) -> None:
        self.feed(WindowSize(self.size.width, self.size.height))
        self._run_command(self.viewer.init())

    def on_resize(self, event: events.Resize) -> None:
        self.feed(WindowSize(event.size.width, event.size.height))

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        self.feed(Key(key_name(event)))

    def feed(self, msg: Any) -> None:
        """Feed one message to the viewer, schedule its command and redraw."""
        command = self.viewer.update(msg)
        if self.viewer.done:
            self.exit()
            return
        if command is not None:
            self._run_command(command)
        self._render()

    def _run_command(self, command: Callable[[], Any]) -> None:
        self.run_worker(
            lambda: self._complete(command),
            group="viewer-command",
            thread=True,
            exit_on_error=False,
        )

    def _complete(self, command: Callable[[], Any]) -> None:
        msg = command()
        if msg is not None and self.is_running:
            self.call_from_thread(self.feed, msg)

    def _render(self) -> None:
        text = Text()
        for i, (style, line) in enumerate(self.viewer.render_rows()):
            if i:
                text.append("\n")
            text.append(line, style=ROW_STYLES.get(style, ""))
        self.query_one("#logs", Static).update(text)


def run(viewer: LogViewer) -> None:
    LogsApp(viewer).run()
