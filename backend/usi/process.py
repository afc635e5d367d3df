"""Ownership of the engine subprocess and its pipes."""
import asyncio
import logging
import os
import sys
from typing import Callable

from .errors import StartupFailure, UnexpectedExit
from .line_reader import LineReader

logger = logging.getLogger(__name__)

# Seconds to wait for the engine to honour "quit" before killing it
QUIT_GRACE = 2.0

READ_SIZE = 4096


class EngineProcess:
    """Spawns the engine binary and pumps its output.

    stdout is split into lines and handed to ``on_line``; stderr is copied
    to the host's stderr unchanged. ``on_exit`` is called once with the
    return code when stdout closes, unless the exit was requested through
    :meth:`close`.
    """

    def __init__(
        self,
        path: str,
        on_line: Callable[[str], None],
        on_exit: Callable[[int | None], None],
        cwd: str | None = None,
    ) -> None:
        self.path = path
        self.cwd = cwd or os.getcwd()
        self._on_line = on_line
        self._on_exit = on_exit
        self._reader = LineReader(self._deliver)
        self._proc: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._closing = False
        self.alive = False

    async def start(self) -> None:
        """Spawn the process.

        Raises:
            StartupFailure: If the binary could not be executed.
        """
        try:
            self._proc = await asyncio.create_subprocess_exec(
                self.path,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.cwd,
            )
        except OSError as e:
            logger.error(f"engine failed to start: {e}")
            raise StartupFailure(f"Unable to start engine {self.path}: {e}") from e

        self.alive = True
        logger.info(f"engine started pid={self._proc.pid} path={self.path}")
        self._tasks = [
            asyncio.create_task(self._pump_stdout()),
            asyncio.create_task(self._pump_stderr()),
        ]

    def send_line(self, line: str) -> None:
        if not self.alive or self._proc is None or self._proc.stdin is None:
            raise UnexpectedExit("engine process is not running")
        logger.debug(f">> {line}")
        self._proc.stdin.write((line + "\n").encode("utf-8"))

    async def drain(self) -> None:
        """Wait until written commands have been flushed to the pipe."""
        if self._proc is None or self._proc.stdin is None:
            return
        try:
            await self._proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise UnexpectedExit(f"engine input closed: {e}") from e

    def _deliver(self, line: str) -> None:
        try:
            self._on_line(line)
        except Exception:
            logger.exception(f"error handling engine line: {line!r}")

    async def _pump_stdout(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        while True:
            chunk = await self._proc.stdout.read(READ_SIZE)
            if not chunk:
                break
            self._reader.push(chunk)

        returncode = await self._proc.wait()
        self.alive = False
        if self._closing:
            logger.info(f"engine stopped code={returncode}")
            return
        logger.warning(f"engine exited code={returncode}")
        self._on_exit(returncode)

    async def _pump_stderr(self) -> None:
        assert self._proc is not None and self._proc.stderr is not None
        while True:
            chunk = await self._proc.stderr.read(READ_SIZE)
            if not chunk:
                break
            sys.stderr.write(chunk.decode("utf-8", errors="replace"))
            sys.stderr.flush()

    async def close(self) -> None:
        """Ask the engine to quit, killing it if it does not."""
        if self._proc is None:
            return
        self._closing = True
        if self.alive and self._proc.stdin is not None:
            try:
                self._proc.stdin.write(b"quit\n")
                await self._proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                pass
        try:
            await asyncio.wait_for(self._proc.wait(), QUIT_GRACE)
        except asyncio.TimeoutError:
            self._proc.kill()
            await self._proc.wait()
        self.alive = False
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
