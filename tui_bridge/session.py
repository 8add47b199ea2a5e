"""
Session bridge: one upstream program, one client connection.

Lifecycle: starting -> active -> closing -> closed

Program output and client input are turned into events on one asyncio queue
and handled by a single dispatcher, so the pending batch only ever has one
writer. The debounce timer runs on the same event loop. Client input is
written to the program by its own writer task, so a program that stops
reading stdin never blocks output routing. Outbound messages are delivered
by a separate sender task so a slow client never stalls the pipeline; its
queue depth drives the backpressure policy.
"""

import asyncio
import codecs
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Union

from .coalesce import (
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_MAX_AGE,
    DEFAULT_MAX_CHARS,
    DEFAULT_MAX_LINES,
    CoalescingBuffer,
    OutboundMessage,
)
from .errors import ConfigError, SpawnError
from .process import ProgramHandle, ProgramSpec, spawn_program
from .profiles import NoiseClassifier, get_profile
from .splitter import DEFAULT_MAX_LINE_LENGTH, LineSplitter
from .stripper import strip_control_sequences

logger = logging.getLogger(__name__)

MODES = ("raw", "stripped", "filtered")
BACKPRESSURE_POLICIES = ("deliver", "pause", "coalesce")

# Websocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_SPAWN_FAILED = 4500

SEND_DRAIN_TIMEOUT = 5.0


class SessionState(str, Enum):
    STARTING = "starting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection(Protocol):
    """Downstream client as seen by the bridge."""

    @property
    def closed(self) -> bool: ...

    async def send(self, message: dict) -> None: ...

    async def receive(self) -> Optional[str]:
        """Next inbound text message, or None once the client is gone."""
        ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None: ...


BackpressureHook = Callable[["SessionBridge", int], None]


@dataclass
class SessionSettings:
    """Per-session pipeline knobs."""
    mode: str = "filtered"
    flush_interval: float = DEFAULT_FLUSH_INTERVAL
    max_batch_lines: int = DEFAULT_MAX_LINES
    max_batch_chars: int = DEFAULT_MAX_CHARS
    max_batch_age: float = DEFAULT_MAX_AGE
    max_line_length: int = DEFAULT_MAX_LINE_LENGTH
    input_terminator: Optional[str] = None  # None = transport default
    kill_grace: float = 2.0
    high_water: int = 64
    backpressure: Union[str, BackpressureHook] = "deliver"

    def __post_init__(self):
        if self.mode not in MODES:
            raise ConfigError(f"Unknown output mode {self.mode!r} (expected one of {MODES})")
        if isinstance(self.backpressure, str) and self.backpressure not in BACKPRESSURE_POLICIES:
            raise ConfigError(
                f"Unknown backpressure policy {self.backpressure!r} "
                f"(expected one of {BACKPRESSURE_POLICIES})"
            )


class OutputPipeline:
    """
    Turns one stream's raw chunks into kept text.

    raw       - decoded text, untouched
    stripped  - control sequences removed
    filtered  - stripped, split into lines, classified; decorative lines dropped
    """

    def __init__(
        self,
        mode: str,
        classifier: Optional[NoiseClassifier] = None,
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
    ):
        self.mode = mode
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._splitter = LineSplitter(max_line_length) if mode == "filtered" else None
        self._classifier = classifier or get_profile("generic").classifier()

    @property
    def separator(self) -> str:
        return "\n" if self.mode == "filtered" else ""

    def feed(self, data: bytes) -> List[str]:
        return self._process(self._decoder.decode(data))

    def finish(self) -> List[str]:
        """Flush the decoder and any unterminated line at stream end."""
        kept = self._process(self._decoder.decode(b"", final=True))
        if self._splitter is not None:
            remainder = self._splitter.flush_remainder()
            if remainder is not None:
                kept.extend(self._keep([remainder]))
        return kept

    def _process(self, text: str) -> List[str]:
        if not text:
            return []
        if self.mode == "raw":
            return [text]

        text = strip_control_sequences(text)
        if self.mode == "stripped":
            return [text] if text else []

        return self._keep(self._splitter.feed(text))

    def _keep(self, lines: List[str]) -> List[str]:
        kept = []
        for line in lines:
            verdict = self._classifier.classify(line)
            if verdict.keep and verdict.text:
                kept.append(verdict.text)
        return kept


Spawner = Callable[[ProgramSpec], Awaitable[ProgramHandle]]


class SessionBridge:
    """Binds one program handle to one connection."""

    def __init__(
        self,
        connection: Connection,
        spec: ProgramSpec,
        classifier: Optional[NoiseClassifier] = None,
        settings: Optional[SessionSettings] = None,
        spawner: Spawner = spawn_program,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or str(uuid.uuid4())
        self.connection = connection
        self.spec = spec
        self.classifier = classifier or get_profile("generic").classifier()
        self.settings = settings or SessionSettings()
        self._spawner = spawner

        self.state = SessionState.STARTING
        self.program: Optional[ProgramHandle] = None
        self.exit_code: Optional[int] = None
        self.close_reason = ""
        self.created_at = time.time()
        self.messages_sent = 0
        self.messages_dropped = 0

        self._events: asyncio.Queue = asyncio.Queue()
        self._inputs: asyncio.Queue = asyncio.Queue()
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._pipelines: Dict[str, OutputPipeline] = {}
        self._buffers: Dict[str, CoalescingBuffer] = {}
        self._tasks: List[asyncio.Task] = []
        self._dispatcher: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._saturated = False
        self._closed = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def input_terminator(self) -> str:
        if self.settings.input_terminator is not None:
            return self.settings.input_terminator
        return self.program.input_terminator if self.program else "\r"

    async def run(self) -> None:
        """Spawn the program and bridge until either side goes away."""
        try:
            self.program = await self._spawner(self.spec)
        except (SpawnError, ConfigError, OSError) as e:
            error = e if isinstance(e, SpawnError) else SpawnError(self.spec.command, e)
            logger.error(f"Session {self.id}: {error.message}")
            self.state = SessionState.CLOSING
            self.close_reason = error.reason
            await self._close_connection(CLOSE_SPAWN_FAILED, error.reason)
            self._mark_closed()
            return

        if self.state is not SessionState.STARTING:
            # close() was called while spawning
            await self.program.stop(self.settings.kill_grace)
            self._mark_closed()
            return

        self._build_pipelines()
        self.state = SessionState.ACTIVE
        logger.info(f"Session {self.id} active: {self.spec.command} (pid {self.program.pid}, mode {self.settings.mode})")

        self._sender = asyncio.ensure_future(self._send_loop())
        self._tasks = [
            asyncio.ensure_future(self._pump_program()),
            asyncio.ensure_future(self._pump_connection()),
            asyncio.ensure_future(self._write_loop()),
        ]
        self._dispatcher = asyncio.ensure_future(self._dispatch())
        try:
            await asyncio.wait({self._dispatcher})
        finally:
            await self.close()

    async def close(self, reason: Optional[str] = None, code: int = CLOSE_NORMAL) -> None:
        """
        Tear the session down. Safe to call more than once.

        Pending output is flushed and delivered before the connection is
        closed; the program gets SIGTERM, then SIGKILL after kill_grace.
        """
        if self.state is SessionState.CLOSED:
            return
        if self.state is SessionState.CLOSING:
            await self._closed.wait()
            return

        starting = self.state is SessionState.STARTING
        self.state = SessionState.CLOSING
        if reason and not self.close_reason:
            self.close_reason = reason

        if starting:
            # run() finishes the teardown once the spawn returns
            await self._close_connection(CLOSE_GOING_AWAY, self.close_reason or "closed")
            return

        current = asyncio.current_task()
        for task in self._tasks + [self._dispatcher]:
            if task is not None and task is not current and not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        self._drain_events()
        self._flush_all()
        await self._drain_outbound()

        if self.program is not None:
            await self.program.stop(self.settings.kill_grace)
            if self.exit_code is None:
                self.exit_code = self.program.exit_code

        await self._close_connection(code, self.close_reason or self._exit_reason())
        self._mark_closed()
        logger.info(f"Session {self.id} closed ({self.close_reason}, {self.messages_sent} messages sent)")

    def _mark_closed(self) -> None:
        self.state = SessionState.CLOSED
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _exit_reason(self) -> str:
        code = self.exit_code if self.exit_code is not None else 0
        return f"exit:{code}"

    def resize(self, cols: int, rows: int) -> None:
        if self.program is not None and self.state is SessionState.ACTIVE:
            self.program.resize(cols, rows)

    def info(self) -> dict:
        return {
            "id": self.id,
            "state": self.state.value,
            "mode": self.settings.mode,
            "command": self.spec.argv(),
            "transport": self.spec.transport,
            "pid": self.program.pid if self.program else None,
            "exit_code": self.exit_code,
            "close_reason": self.close_reason,
            "messages_sent": self.messages_sent,
            "created_at": self.created_at,
        }

    # ------------------------------------------------------------------
    # Event sources
    # ------------------------------------------------------------------

    def _build_pipelines(self) -> None:
        s = self.settings
        for kind in self.program.kinds:
            pipeline = OutputPipeline(s.mode, self.classifier, s.max_line_length)
            self._pipelines[kind] = pipeline
            self._buffers[kind] = CoalescingBuffer(
                self._emit,
                kind=kind,
                separator=pipeline.separator,
                flush_interval=s.flush_interval,
                max_lines=s.max_batch_lines,
                max_chars=s.max_batch_chars,
                max_age=s.max_batch_age,
            )

    def _enqueue_output(self, kind: str, data: bytes) -> None:
        self._events.put_nowait(("output", kind, data))

    async def _pump_program(self) -> None:
        try:
            code = await self.program.pump(self._enqueue_output)
        except Exception as e:
            logger.error(f"Session {self.id}: error reading program output: {e}")
            self._events.put_nowait(("error", e))
            return
        self._events.put_nowait(("exit", code))

    async def _pump_connection(self) -> None:
        try:
            while True:
                text = await self.connection.receive()
                if text is None:
                    break
                self._events.put_nowait(("input", text))
        except Exception as e:
            logger.debug(f"Session {self.id}: connection receive failed: {e}")
        self._events.put_nowait(("disconnect",))

    async def _dispatch(self) -> None:
        while self.state is SessionState.ACTIVE:
            event = await self._events.get()
            kind = event[0]

            if kind == "output":
                self._on_output(event[1], event[2])
            elif kind == "input":
                self._inputs.put_nowait(event[1])
            elif kind == "exit":
                self.exit_code = event[1]
                self.close_reason = self._exit_reason()
                logger.info(f"Session {self.id}: program exited ({self.close_reason})")
                return
            elif kind == "disconnect":
                self.close_reason = "client-closed"
                logger.info(f"Session {self.id}: client disconnected")
                return
            elif kind == "error":
                self.close_reason = f"error:{type(event[1]).__name__}"
                return

    def _drain_events(self) -> None:
        """Route output that arrived after the dispatcher stopped."""
        while not self._events.empty():
            event = self._events.get_nowait()
            if event[0] == "output":
                self._on_output(event[1], event[2])

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _on_output(self, kind: str, data: bytes) -> None:
        pipeline = self._pipelines.get(kind)
        if pipeline is None:
            return
        buffer = self._buffers[kind]
        for text in pipeline.feed(data):
            buffer.push(text)
        buffer.schedule_flush()

    async def _write_loop(self) -> None:
        """Forward client input in order. A program that stops reading stalls only this task."""
        while True:
            text = await self._inputs.get()
            data = (text + self.input_terminator).encode("utf-8")
            try:
                await self.program.write(data)
            except OSError as e:
                logger.warning(f"Session {self.id}: write to program failed: {e}")
                self._events.put_nowait(("error", e))
                return

    def _flush_all(self) -> None:
        for kind, pipeline in self._pipelines.items():
            buffer = self._buffers[kind]
            for text in pipeline.finish():
                buffer.push(text)
            buffer.flush_now()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _emit(self, message: OutboundMessage) -> None:
        self._outbound.put_nowait(message)
        self._check_backpressure()

    async def _send_loop(self) -> None:
        while True:
            message = await self._outbound.get()
            if message is None:
                return
            await self._deliver(message)
            self._relieve_backpressure()

    async def _deliver(self, message: OutboundMessage) -> None:
        try:
            await self.connection.send(message.to_wire())
            self.messages_sent += 1
        except Exception as e:
            self.messages_dropped += 1
            logger.debug(f"Session {self.id}: dropping message, send failed: {e}")

    async def _drain_outbound(self) -> None:
        if self._sender is None:
            return
        self._outbound.put_nowait(None)
        try:
            await asyncio.wait_for(self._sender, SEND_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Session {self.id}: client too slow, {self._outbound.qsize()} messages not delivered")

    async def _close_connection(self, code: int, reason: str) -> None:
        if self.connection.closed:
            return
        try:
            await self.connection.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Session {self.id}: close failed: {e}")

    # ------------------------------------------------------------------
    # Backpressure
    # ------------------------------------------------------------------

    def _check_backpressure(self) -> None:
        depth = self._outbound.qsize()
        if depth < self.settings.high_water:
            return

        policy = self.settings.backpressure
        if callable(policy):
            policy(self, depth)
        elif policy == "pause":
            if self.program is not None and not self.program.paused:
                logger.info(f"Session {self.id}: {depth} messages queued, pausing program output")
                self.program.pause_reading()
        elif policy == "coalesce":
            self._coalesce_outbound()
        elif not self._saturated:
            logger.warning(f"Session {self.id}: {depth} messages queued for a slow client")
        self._saturated = True

    def _relieve_backpressure(self) -> None:
        if not self._saturated:
            return
        if self._outbound.qsize() > self.settings.high_water // 2:
            return
        self._saturated = False
        if self.program is not None and self.program.paused:
            logger.info(f"Session {self.id}: client caught up, resuming program output")
            self.program.resume_reading()

    def _coalesce_outbound(self) -> None:
        """Merge adjacent queued messages of the same kind."""
        merged: List[Optional[OutboundMessage]] = []
        while not self._outbound.empty():
            message = self._outbound.get_nowait()
            last = merged[-1] if merged else None
            if message is not None and last is not None and last.kind == message.kind:
                separator = self._buffers[message.kind].separator if message.kind in self._buffers else "\n"
                merged[-1] = OutboundMessage(last.kind, last.payload + separator + message.payload)
            else:
                merged.append(message)
        for message in merged:
            self._outbound.put_nowait(message)
