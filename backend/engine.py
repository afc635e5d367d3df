import asyncio
import logging
import os
import shutil
from typing import Callable

from settings import Settings, settings
from usi import (
    AnalysisResult,
    EngineProcess,
    RequestSerializer,
    RequestTimeout,
    SessionOptions,
    StartupFailure,
    UnexpectedExit,
    UsiProtocol,
)

logger = logging.getLogger(__name__)

ProcessFactory = Callable[..., EngineProcess]


def is_configured() -> bool:
    """Check if the engine binary is present and executable."""
    if not settings.engine_path:
        return False
    # Check if path exists directly or is in system PATH
    return os.path.isfile(settings.engine_path) or shutil.which(settings.engine_path) is not None


def request_timeout(depth: int, floor: float, per_depth: float) -> float:
    """Seconds to wait for bestmove on a search of ``depth`` plies."""
    return max(floor, per_depth * depth)


class AIEngine:
    """A single USI engine session shared by all callers.

    Requests run strictly one at a time, in arrival order. A request that
    times out is abandoned: the engine is sent ``stop`` and the rest of that
    search's output is discarded, so it never reaches a later request.
    """

    def __init__(
        self,
        engine_path: str,
        *,
        default_threads: int = 1,
        default_hash_mb: int = 256,
        eval_file: str | None = None,
        eval_dir: str | None = None,
        ready_timeout: float = 4.0,
        timeout_floor: float = 8.0,
        timeout_per_depth: float = 0.4,
        auto_restart: bool = False,
        process_factory: ProcessFactory = EngineProcess,
    ) -> None:
        self.engine_path = engine_path
        self.default_threads = default_threads
        self.options = SessionOptions(
            threads=default_threads,
            hash_mb=default_hash_mb,
            eval_file=eval_file,
            eval_dir=eval_dir,
        )
        self.ready_timeout = ready_timeout
        self.timeout_floor = timeout_floor
        self.timeout_per_depth = timeout_per_depth
        self.auto_restart = auto_restart
        self._process_factory = process_factory
        self._serializer = RequestSerializer()
        self._process: EngineProcess | None = None
        self._protocol: UsiProtocol | None = None
        self._restart_task: asyncio.Task | None = None
        self._closed = False

    @classmethod
    def from_settings(cls, cfg: Settings | None = None, **kwargs) -> "AIEngine":
        cfg = cfg or settings
        return cls(
            cfg.engine_path,
            default_threads=cfg.engine_threads,
            default_hash_mb=cfg.engine_hash_mb,
            eval_file=cfg.eval_file,
            eval_dir=cfg.eval_dir,
            ready_timeout=cfg.ready_timeout,
            timeout_floor=cfg.timeout_floor,
            timeout_per_depth=cfg.timeout_per_depth,
            auto_restart=cfg.engine_auto_restart,
            **kwargs,
        )

    @property
    def ready(self) -> bool:
        return self._protocol is not None and self._protocol.ready

    @property
    def engine_name(self) -> str | None:
        return self._protocol.engine_name if self._protocol else None

    async def start(self) -> None:
        """Spawn the engine and send the handshake.

        A spawn failure is logged and recorded; it surfaces to callers of
        :meth:`analyze` as StartupFailure.
        """
        protocol = UsiProtocol(self._send_line, self._serializer, self.options)
        self._protocol = protocol
        self._process = self._process_factory(
            self.engine_path,
            on_line=protocol.on_line,
            on_exit=self._on_exit,
        )
        try:
            await self._process.start()
        except StartupFailure as e:
            logger.error(f"engine unavailable: {e}")
            protocol.fail(e)
            return
        protocol.begin_handshake()

    def _send_line(self, line: str) -> None:
        assert self._process is not None
        self._process.send_line(line)

    def _on_exit(self, returncode: int | None) -> None:
        if self._protocol is not None:
            self._protocol.on_exit(returncode)
        if self.auto_restart and not self._closed:
            logger.warning("restarting engine")
            self._restart_task = asyncio.get_running_loop().create_task(self.start())

    async def analyze(
        self,
        sfen: str,
        depth: int,
        multipv: int,
        threads: int | None = None,
        force_move: str | None = None,
    ) -> AnalysisResult:
        """Run one bounded-depth search.

        Args:
            sfen: ``startpos`` (optionally with ``moves ...``) or an SFEN string.
            depth: Search depth passed to ``go depth``.
            multipv: Number of variants to request.
            threads: Thread count for this search; defaults to the session default.
            force_move: Move to play on ``sfen`` before searching.

        Returns:
            AnalysisResult with the best move and the rank-ordered variants.

        Raises:
            StartupFailure, HandshakeTimeout, RequestTimeout, UnexpectedExit
        """
        if self._protocol is None:
            await self.start()
        if threads is None:
            threads = self.default_threads

        async with self._serializer.hold() as serializer:
            protocol = self._protocol
            assert protocol is not None
            await protocol.wait_ready(self.ready_timeout)

            pending = serializer.open(request_timeout(depth, self.timeout_floor, self.timeout_per_depth))
            try:
                protocol.submit(pending, sfen, depth, multipv, threads=threads, force_move=force_move)
                await self._process.drain()
                return await asyncio.wait_for(pending.future, pending.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"no bestmove after {pending.timeout}s (depth={depth}); abandoning request")
                serializer.close(pending)
                try:
                    protocol.abandon()
                except UnexpectedExit as e:
                    logger.warning(f"could not stop abandoned search: {e}")
                raise RequestTimeout(f"engine timeout (no bestmove after {pending.timeout}s)") from None
            finally:
                serializer.close(pending)

    async def close(self) -> None:
        self._closed = True
        if self._restart_task is not None:
            await asyncio.gather(self._restart_task, return_exceptions=True)
        if self._process is not None:
            await self._process.close()

