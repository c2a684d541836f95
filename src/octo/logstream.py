"""
Container log pipeline: initial tail fetch and live follow.

Non-TTY containers send their logs multiplexed: every frame starts with an
8-byte header {stream, 0, 0, 0, size (uint32 big endian)} followed by `size`
payload bytes, stream 1 being stdout and 2 stderr. TTY containers send raw
bytes with no framing at all. The pipeline decodes the framing itself
(docker-py's own helper discards the stream id) and falls back to treating
the payload as plain stdout when the very first header is not a valid one.

Components:
  - FrameDecoder: incremental decoder for the 8-byte framing
  - LineSplitter: incremental bytes-to-lines splitter with a 1 MiB cap
  - parse_timestamped_line(): engine timestamp prefix -> LogEntry
  - fetch_logs(): last N lines, both streams, merged by timestamp
  - LogStream: follow mode, one worker thread feeding a bounded queue

Threading:
  - Each LogStream owns exactly one daemon worker
  - cancel() closes the HTTP response so a blocked read returns at once
  - The entries queue is closed (end marker) after any error is recorded
"""

import queue
import struct
import threading
import logging
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional, Tuple

from .context import Context
from .model import LogEntry, parse_rfc3339, truncate_id

logger = logging.getLogger(__name__)

HEADER_SIZE = 8
MAX_LINE_BYTES = 1024 * 1024
STREAM_QUEUE_SIZE = 100

_STREAM_NAMES = {0: "stdout", 1: "stdout", 2: "stderr"}
_END = object()


class FramingError(ValueError):
    """The byte stream does not follow the multiplexed log framing."""


class FrameDecoder:
    """Incremental decoder for multiplexed log frames."""

    def __init__(self):
        self._buf = bytearray()
        self._header: Optional[Tuple[str, int]] = None
        self.started = False  # at least one valid header seen

    def feed(self, data: bytes) -> List[Tuple[str, bytes]]:
        """Add bytes and return every frame they complete as (stream, payload)."""
        self._buf += data
        frames = []
        while True:
            if self._header is None:
                if len(self._buf) < HEADER_SIZE:
                    break
                header = bytes(self._buf[:HEADER_SIZE])
                if header[0] not in _STREAM_NAMES or header[1:4] != b"\x00\x00\x00":
                    raise FramingError(f"invalid frame header {header!r}")
                stream_id, size = struct.unpack(">BxxxL", header)
                del self._buf[:HEADER_SIZE]
                self._header = (_STREAM_NAMES[stream_id], size)
                self.started = True

            stream, size = self._header
            if len(self._buf) < size:
                break
            frames.append((stream, bytes(self._buf[:size])))
            del self._buf[:size]
            self._header = None
        return frames

    def pending(self) -> bytes:
        """Bytes received but not yet part of a complete frame."""
        return bytes(self._buf)


def demux(chunks: Iterable[bytes]) -> Tuple[bytes, bytes]:
    """Split a multiplexed body into (stdout, stderr). Raises FramingError."""
    decoder = FrameDecoder()
    out = {"stdout": bytearray(), "stderr": bytearray()}
    for chunk in chunks:
        for stream, payload in decoder.feed(chunk):
            out[stream] += payload
    # A truncated trailing frame is ignored, as the engine's own copier does.
    return bytes(out["stdout"]), bytes(out["stderr"])


def _decode_line(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")


class LineSplitter:
    """Turns a stream of byte chunks into text lines."""

    def __init__(self, max_line: int = MAX_LINE_BYTES):
        self._buf = bytearray()
        self._max_line = max_line

    def feed(self, data: bytes) -> List[str]:
        self._buf += data
        lines = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                # Overlong lines are cut rather than buffered forever
                while len(self._buf) >= self._max_line:
                    lines.append(_decode_line(bytes(self._buf[:self._max_line])))
                    del self._buf[:self._max_line]
                break
            lines.append(_decode_line(bytes(self._buf[:idx])))
            del self._buf[:idx + 1]
        return lines

    def flush(self) -> List[str]:
        if not self._buf:
            return []
        line = _decode_line(bytes(self._buf))
        self._buf.clear()
        return [line]


def parse_timestamped_line(line: str, stream: str) -> LogEntry:
    """
    Split the engine's RFC3339 timestamp prefix off a log line.

    The canonical prefix is 30 characters ("2026-01-01T00:00:00.000000000Z");
    a few shorter forms are tried next. Lines without a parseable prefix keep
    their full text and are stamped with the current time.
    """
    if len(line) > 30:
        ts = parse_rfc3339(line[:30])
        if ts is not None:
            return LogEntry(timestamp=ts, stream=stream, content=line[30:].strip())

    for length in (35, 25, 20):
        if len(line) > length:
            ts = parse_rfc3339(line[:length].strip())
            if ts is not None:
                return LogEntry(timestamp=ts, stream=stream, content=line[length:].strip())

    token, _, rest = line.partition(" ")
    ts = parse_rfc3339(token)
    if ts is not None:
        return LogEntry(timestamp=ts, stream=stream, content=rest.strip())

    return LogEntry(timestamp=datetime.now(timezone.utc), stream=stream, content=line)


def parse_log_lines(data: bytes, stream: str) -> List[LogEntry]:
    splitter = LineSplitter()
    lines = splitter.feed(data) + splitter.flush()
    return [parse_timestamped_line(line, stream) for line in lines]


def _read_body(api, container_id: str, tail: int, ctx: Context) -> bytes:
    response = api.container_logs_raw(container_id, tail=tail, follow=False,
                                      timestamps=True, timeout=ctx.remaining())
    ctx.on_cancel(response.close)
    try:
        return b"".join(response.iter_content(chunk_size=None))
    except Exception:
        ctx.check()
        raise
    finally:
        ctx.remove_callback(response.close)
        response.close()


def fetch_logs(api, container_id: str, tail: int, ctx: Context) -> List[LogEntry]:
    """Fetch the last `tail` lines of both streams, sorted by timestamp."""
    with ctx.with_timeout(None) as scope:
        body = _read_body(api, container_id, tail, scope)
        try:
            stdout, stderr = demux([body])
        except FramingError:
            logger.debug(f"Logs of {truncate_id(container_id)} are not multiplexed, re-reading as raw")
            body = _read_body(api, container_id, tail, scope)
            entries = parse_log_lines(body, "stdout")
        else:
            entries = parse_log_lines(stdout, "stdout") + parse_log_lines(stderr, "stderr")

    entries.sort(key=lambda e: e.timestamp)
    return entries


class LogStream:
    """
    Live log follow for one container.

    A worker thread reads the followed logs endpoint (tail=0), decodes it and
    pushes LogEntry values onto `entries`, a bounded queue. When the stream
    ends the worker records any error on `errors` and then closes `entries`.
    """

    def __init__(self, api, container_id: str, ctx: Optional[Context] = None,
                 queue_size: int = STREAM_QUEUE_SIZE):
        self.container_id = container_id
        self.entries: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self.errors: "queue.Queue" = queue.Queue(maxsize=1)
        self._api = api
        self._ctx = ctx.with_timeout(None) if ctx is not None else Context()
        self._ended = False
        self._thread = threading.Thread(
            target=self._run, name=f"logs-{truncate_id(container_id)}", daemon=True
        )

    def start(self) -> 'LogStream':
        self._thread.start()
        return self

    def cancel(self) -> None:
        """Stop following. Safe to call any number of times."""
        self._ctx.cancel()

    @property
    def cancelled(self) -> bool:
        return self._ctx.cancelled

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[LogEntry]:
        """
        Next entry, or None once the stream has ended.

        Raises queue.Empty if `timeout` elapses first.
        """
        if self._ended:
            return None
        item = self.entries.get(timeout=timeout)
        if item is _END:
            self._ended = True
            return None
        return item

    def error(self) -> Optional[Exception]:
        """The error that ended the stream, if any."""
        try:
            return self.errors.get_nowait()
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[LogEntry]:
        while True:
            entry = self.get()
            if entry is None:
                return
            yield entry

    def _offer(self, item) -> bool:
        while True:
            try:
                self.entries.put(item, timeout=0.1)
                return True
            except queue.Full:
                if self._ctx.cancelled:
                    return False

    def _emit(self, lines: List[str], stream: str) -> bool:
        for line in lines:
            if self._ctx.cancelled or not self._offer(parse_timestamped_line(line, stream)):
                return False
        return True

    def _pump(self, chunks: Iterable[bytes]) -> None:
        decoder = FrameDecoder()
        splitters = {"stdout": LineSplitter(), "stderr": LineSplitter()}
        raw = False

        for chunk in chunks:
            if self._ctx.cancelled:
                return
            if raw:
                if not self._emit(splitters["stdout"].feed(chunk), "stdout"):
                    return
                continue
            try:
                frames = decoder.feed(chunk)
            except FramingError:
                if decoder.started:
                    raise
                logger.debug(f"Log stream of {truncate_id(self.container_id)} is raw (TTY)")
                raw = True
                if not self._emit(splitters["stdout"].feed(decoder.pending()), "stdout"):
                    return
                continue
            for stream, payload in frames:
                if not self._emit(splitters[stream].feed(payload), stream):
                    return

        for stream, splitter in splitters.items():
            if not self._emit(splitter.flush(), stream):
                return

    def _run(self) -> None:
        response = None
        try:
            response = self._api.container_logs_raw(self.container_id, tail=0, follow=True,
                                                    timestamps=True, timeout=None)
            self._ctx.on_cancel(response.close)
            self._pump(response.iter_content(chunk_size=None))
        except Exception as e:
            if not self._ctx.cancelled:
                logger.error(f"Log stream for {truncate_id(self.container_id)} failed: {e}", exc_info=True)
                self.errors.put_nowait(e)
        finally:
            if response is not None:
                response.close()
            self._offer(_END)
            self._ctx.close()
            logger.debug(f"Log stream for {truncate_id(self.container_id)} finished")
