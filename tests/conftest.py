"""
Shared fixtures: an in-memory program handle and client connection.
"""

import asyncio
from typing import List, Optional

import pytest

from tui_bridge.errors import SpawnError


class FakeProgram:
    """Scripted stand-in for a ProgramHandle."""

    def __init__(
        self,
        chunks=(),
        exit_code: Optional[int] = 0,
        hold: bool = False,
        kinds=("stdout",),
        input_terminator: str = "\r",
        echo: bool = False,
        delay: float = 0.0,
    ):
        self.kinds = kinds
        self.input_terminator = input_terminator
        self.chunks = list(chunks)
        self.exit_code = exit_code
        self.echo = echo
        self.delay = delay
        self.pid = 4242
        self.written: List[bytes] = []
        self.resized = []
        self.stopped = False
        self.paused = False
        self.pause_calls = 0
        self.resume_calls = 0
        self._release = asyncio.Event()
        if not hold:
            self._release.set()
        self._emit = None

    async def pump(self, emit):
        self._emit = emit
        for chunk in self.chunks:
            kind, data = chunk if isinstance(chunk, tuple) else ("stdout", chunk)
            emit(kind, data)
            await asyncio.sleep(self.delay)
        await self._release.wait()
        return self.exit_code

    async def write(self, data: bytes) -> None:
        self.written.append(data)
        if self.echo and self._emit is not None:
            self._emit("stdout", b"echo:" + data.strip() + b"\n")

    def feed(self, data: bytes, kind: str = "stdout") -> None:
        """Produce output while the program is running."""
        self._emit(kind, data)

    def resize(self, cols, rows):
        self.resized.append((cols, rows))

    def exit(self, code: Optional[int] = 0) -> None:
        self.exit_code = code
        self._release.set()

    async def stop(self, grace=2.0):
        self.stopped = True
        self._release.set()
        return self.exit_code

    def pause_reading(self):
        self.paused = True
        self.pause_calls += 1

    def resume_reading(self):
        self.paused = False
        self.resume_calls += 1


class FakeConnection:
    """In-memory client. Put None on the inbound queue to disconnect."""

    def __init__(self, block_sends: bool = False):
        self.sent: List[dict] = []
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.close_calls = 0
        self.gate = asyncio.Event()
        if not block_sends:
            self.gate.set()

    async def send(self, message: dict) -> None:
        await self.gate.wait()
        if self.closed:
            raise RuntimeError("connection closed")
        self.sent.append(message)

    async def receive(self) -> Optional[str]:
        text = await self.inbound.get()
        if text is None:
            self.closed = True
        return text

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls += 1
        self.closed = True
        self.close_code = code
        self.close_reason = reason


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Wait until predicate() is true or fail."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def make_spawner():
    """
    Build a spawner that hands out FakePrograms.

    The returned coroutine function records every program it spawned in
    its ``programs`` attribute.
    """
    def factory(error: Optional[BaseException] = None, **program_kwargs):
        programs: List[FakeProgram] = []

        async def spawner(spec):
            if error is not None:
                raise SpawnError(spec.command, error)
            program = FakeProgram(**program_kwargs)
            programs.append(program)
            return program

        spawner.programs = programs
        return spawner

    return factory
