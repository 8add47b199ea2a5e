"""
Upstream program handles.

Two transports:
- pty: the program runs on a pseudo-terminal and believes it is interactive
  (colors, line editing, spinners). stdout and stderr share one stream.
- pipe: plain subprocess pipes, stdout and stderr kept apart.

A handle reports output through pump(emit) and takes input through write().
It knows nothing about filtering or clients.
"""

import asyncio
import fcntl
import logging
import os
import pty
import signal
import struct
import termios
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .errors import ConfigError, SpawnError

logger = logging.getLogger(__name__)

READ_SIZE = 4096
DRAIN_TIMEOUT = 0.5  # Max time to keep reading after the program exited
TRANSPORTS = ("pty", "pipe")

Emit = Callable[[str, bytes], None]


@dataclass
class ProgramSpec:
    """What to run and how."""
    command: str
    args: List[str] = field(default_factory=list)
    cols: int = 100
    rows: int = 30
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    transport: str = "pty"
    term: str = "xterm-color"

    def argv(self) -> List[str]:
        return [self.command] + [str(a) for a in self.args]

    def environment(self) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({k: str(v) for k, v in self.env.items()})
        if self.transport == "pty":
            env["TERM"] = self.term
        return env


def set_terminal_size(fd: int, cols: int, rows: int, child_pid: Optional[int] = None) -> None:
    """
    Set terminal size using TIOCSWINSZ ioctl.

    Args:
        fd: File descriptor of the pty master.
        cols: Number of columns.
        rows: Number of rows.
        child_pid: Optional child process ID to send SIGWINCH for redraw.
    """
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)

    if child_pid:
        try:
            os.kill(child_pid, signal.SIGWINCH)
        except ProcessLookupError:
            pass


def _acquire_controlling_tty() -> None:
    """Runs in the child between fork and exec."""
    os.setsid()
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


class ProgramHandle:
    """Common lifecycle for a spawned program."""

    kinds = ("stdout",)
    input_terminator = "\n"

    def __init__(self, process: asyncio.subprocess.Process, spec: ProgramSpec):
        self._process = process
        self.spec = spec
        self._resume = asyncio.Event()
        self._resume.set()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    @property
    def exit_code(self) -> Optional[int]:
        """Exit status, or None while running or when killed by a signal."""
        code = self._process.returncode
        if code is None or code < 0:
            return None
        return code

    @property
    def paused(self) -> bool:
        return not self._resume.is_set()

    def pause_reading(self) -> None:
        self._resume.clear()

    def resume_reading(self) -> None:
        self._resume.set()

    async def pump(self, emit: Emit) -> Optional[int]:
        """
        Forward output to emit(kind, data) until the program exits.

        Returns:
            Exit code (None if the program was killed by a signal).
        """
        reader = asyncio.ensure_future(self._read_all(emit))
        try:
            await self._process.wait()
            # Output written before exit is drained even when reading is paused
            self.resume_reading()
            try:
                await asyncio.wait_for(asyncio.shield(reader), DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug(f"Output of pid {self.pid} still open after exit, stop reading")
        finally:
            reader.cancel()
        return self.exit_code

    async def _read_all(self, emit: Emit) -> None:
        raise NotImplementedError

    async def write(self, data: bytes) -> None:
        raise NotImplementedError

    def resize(self, cols: int, rows: int) -> None:
        """Resize the terminal. No-op for transports without one."""

    def terminate(self, sig: int = signal.SIGTERM) -> None:
        if not self.running:
            return
        try:
            self._process.send_signal(sig)
        except ProcessLookupError:
            pass

    def kill(self) -> None:
        self.terminate(signal.SIGKILL)

    async def wait(self) -> Optional[int]:
        await self._process.wait()
        return self.exit_code

    async def stop(self, grace: float = 2.0) -> Optional[int]:
        """SIGTERM, then SIGKILL if the program is still alive after grace seconds."""
        if self.running:
            self.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), grace)
            except asyncio.TimeoutError:
                logger.warning(f"pid {self.pid} ignored SIGTERM for {grace}s, killing")
                self.kill()
                await self._process.wait()
        self.close()
        return self.exit_code

    def close(self) -> None:
        """Release file descriptors."""


class PtyProgram(ProgramHandle):
    """Program attached to a pseudo-terminal."""

    kinds = ("stdout",)
    input_terminator = "\r"

    def __init__(self, process: asyncio.subprocess.Process, spec: ProgramSpec, master_fd: int):
        super().__init__(process, spec)
        self._master_fd: Optional[int] = master_fd

    @classmethod
    async def spawn(cls, spec: ProgramSpec) -> "PtyProgram":
        """
        Spawn spec.command on a fresh pty.

        Raises:
            SpawnError: Command not found, not executable, bad cwd.
        """
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(spec.command, e)
        try:
            set_terminal_size(master_fd, spec.cols, spec.rows)
            process = await asyncio.create_subprocess_exec(
                *spec.argv(),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=spec.cwd,
                env=spec.environment(),
                preexec_fn=_acquire_controlling_tty,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(spec.command, e)
        finally:
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        logger.info(f"Spawned {spec.command} on pty (pid {process.pid}, {spec.cols}x{spec.rows})")
        return cls(process, spec, master_fd)

    async def _wait_readable(self) -> None:
        fd = self._master_fd
        loop = asyncio.get_running_loop()
        ready = loop.create_future()

        def _on_ready():
            if not ready.done():
                ready.set_result(None)

        loop.add_reader(fd, _on_ready)
        try:
            await ready
        finally:
            loop.remove_reader(fd)

    async def _read_all(self, emit: Emit) -> None:
        while self._master_fd is not None:
            await self._resume.wait()
            try:
                await self._wait_readable()
                data = os.read(self._master_fd, READ_SIZE)
            except BlockingIOError:
                continue
            except OSError:
                # EIO: every slave end closed
                break
            if not data:
                break
            emit("stdout", data)

    async def write(self, data: bytes) -> None:
        if self._master_fd is None:
            raise OSError("pty is closed")
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        if self._master_fd is None:
            return
        set_terminal_size(self._master_fd, cols, rows, self.pid if self.running else None)
        logger.info(f"Terminal resized to {cols}x{rows} (pid {self.pid})")

    def terminate(self, sig: int = signal.SIGTERM) -> None:
        if not self.running:
            return
        # Own session, so the process group id is the pid
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            super().terminate(sig)

    def close(self) -> None:
        if self._master_fd is None:
            return
        try:
            os.close(self._master_fd)
        except OSError:
            pass
        self._master_fd = None


class PipeProgram(ProgramHandle):
    """Program on plain pipes; stdout and stderr stay separate."""

    kinds = ("stdout", "stderr")
    input_terminator = "\n"

    @classmethod
    async def spawn(cls, spec: ProgramSpec) -> "PipeProgram":
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                env=spec.environment(),
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(spec.command, e)

        logger.info(f"Spawned {spec.command} on pipes (pid {process.pid})")
        return cls(process, spec)

    async def _read_stream(self, kind: str, stream: asyncio.StreamReader, emit: Emit) -> None:
        while True:
            await self._resume.wait()
            data = await stream.read(READ_SIZE)
            if not data:
                break
            emit(kind, data)

    async def _read_all(self, emit: Emit) -> None:
        await asyncio.gather(
            self._read_stream("stdout", self._process.stdout, emit),
            self._read_stream("stderr", self._process.stderr, emit),
        )

    async def write(self, data: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise OSError("stdin is closed")
        stdin.write(data)
        await stdin.drain()

    def close(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()


async def spawn_program(spec: ProgramSpec) -> ProgramHandle:
    """Spawn spec with the transport it names."""
    if spec.transport == "pty":
        return await PtyProgram.spawn(spec)
    if spec.transport == "pipe":
        return await PipeProgram.spawn(spec)
    raise ConfigError(f"Unknown transport {spec.transport!r} (expected one of {TRANSPORTS})")
