"""USI session state machine and line parsing."""
import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable

from .aggregator import AnalysisVariant
from .errors import EngineError, HandshakeTimeout, UnexpectedExit
from .serializer import PendingRequest, RequestSerializer

logger = logging.getLogger(__name__)

INFO_INT_FIELDS = {
    "depth": re.compile(r"(?:^| )depth (\d+)"),
    "multipv": re.compile(r"(?:^| )multipv (\d+)"),
    "score_cp": re.compile(r" score cp (-?\d+)"),
    "mate": re.compile(r" score mate (-?\d+)"),
    "nodes": re.compile(r" nodes (\d+)"),
    "nps": re.compile(r" nps (\d+)"),
}
INFO_PV_RE = re.compile(r" pv (.+)$")

STARTPOS_RE = re.compile(r"^startpos(\s|$)")
MOVES_CLAUSE_RE = re.compile(r"(\s|^)moves(\s|$)")


class State(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    FAILED = "failed"


@dataclass
class SessionOptions:
    """Options applied once the engine reports readyok."""

    threads: int = 1
    hash_mb: int = 256
    eval_file: str | None = None
    eval_dir: str | None = None


def parse_info(line: str) -> AnalysisVariant:
    """Extract the fields present on an ``info`` line.

    Args:
        line: A full line starting with ``info``.

    Returns:
        AnalysisVariant holding only the fields found on the line.
    """
    update: AnalysisVariant = {}
    for key, pattern in INFO_INT_FIELDS.items():
        m = pattern.search(line)
        if m:
            update[key] = int(m.group(1))
    m = INFO_PV_RE.search(line)
    if m:
        update["pv"] = m.group(1).split()
    return update


def build_position_command(sfen: str, force_move: str | None = None) -> str:
    """Build the ``position`` command for a startpos or SFEN input.

    ``startpos`` inputs are passed through, gaining ``moves <force_move>``
    only when they carry no move list yet; a forced move is dropped when the
    input already has one. Any other input is sent as ``position sfen``.
    """
    if STARTPOS_RE.match(sfen):
        if force_move and not MOVES_CLAUSE_RE.search(sfen):
            return f"position {sfen} moves {force_move}"
        return f"position {sfen}"
    if force_move:
        return f"position sfen {sfen} moves {force_move}"
    return f"position sfen {sfen}"


class UsiProtocol:
    """Drives one engine session from handshake to analysis results.

    Lines from the engine arrive through :meth:`on_line`; commands go out
    through ``send_line``. Results are written into the request currently
    held by the serializer, never into module state.
    """

    def __init__(
        self,
        send_line: Callable[[str], None],
        serializer: RequestSerializer,
        options: SessionOptions | None = None,
    ) -> None:
        self._send = send_line
        self._serializer = serializer
        self.options = options or SessionOptions()
        self.state = State.UNINITIALIZED
        self.engine_name: str | None = None
        self.current_threads = self.options.threads
        self._ready = asyncio.Event()
        self._failure: EngineError | None = None
        # Searches given up on whose bestmove has not arrived yet
        self.abandoned = 0

    @property
    def ready(self) -> bool:
        return self.state is State.READY

    def begin_handshake(self) -> None:
        self._send("usi")
        self.state = State.INITIALIZING

    def on_line(self, line: str) -> None:
        logger.debug(f"<< {line}")
        if line == "usiok":
            self._send("isready")
            self.state = State.AWAITING_READY
            return
        if line == "readyok":
            if self.state is State.AWAITING_READY:
                self._apply_defaults()
                self.state = State.READY
                self._ready.set()
            return
        if line.startswith("id name ") and self.state is State.INITIALIZING:
            self.engine_name = line[len("id name "):].strip()
            return

        if self.abandoned:
            # Output of a timed-out search; never shown to the current request
            if line.startswith("bestmove"):
                self.abandoned -= 1
                logger.debug(f"dropped stale {line}")
            return

        pending = self._serializer.pending
        if pending is None:
            return
        if line.startswith("info "):
            pending.variants.merge(parse_info(line))
            return
        if line.startswith("bestmove"):
            parts = line.split()
            bestmove = parts[1] if len(parts) > 1 else "none"
            logger.debug(f"bestmove {bestmove} with {len(pending.variants)} variants")
            result = pending.variants.finalize(bestmove)
            self._serializer.close(pending)
            pending.resolve(result)

    def abandon(self) -> None:
        """Give up on the search in flight.

        Sends ``stop`` so the engine answers promptly. Every line up to and
        including that search's ``bestmove`` is then discarded.
        """
        self.abandoned += 1
        self._send("stop")

    def _apply_defaults(self) -> None:
        opts = self.options
        self._send(f"setoption name Threads value {opts.threads}")
        self._send(f"setoption name Hash value {opts.hash_mb}")
        if opts.eval_file:
            self._send(f"setoption name EvalFile value {opts.eval_file}")
        if opts.eval_dir:
            self._send(f"setoption name EvalDir value {opts.eval_dir}")
        self.current_threads = opts.threads

    def fail(self, exc: EngineError) -> None:
        """Put the session in a terminal failed state.

        Readiness waiters wake up and raise ``exc``; an outstanding request
        is failed with it too.
        """
        self.state = State.FAILED
        self._failure = exc
        self._ready.set()
        pending = self._serializer.pending
        if pending is not None:
            self._serializer.close(pending)
            pending.fail(exc)

    def on_exit(self, returncode: int | None) -> None:
        self.fail(UnexpectedExit(f"engine exited (code={returncode})"))

    def _raise_failure(self) -> None:
        exc = self._failure
        assert exc is not None
        raise type(exc)(*exc.args)

    async def wait_ready(self, timeout: float) -> None:
        """Block until readyok has been processed.

        Raises:
            HandshakeTimeout: If readiness is not reached within ``timeout``.
            EngineError: The failure recorded for this session, if any.
        """
        if self._failure is not None:
            self._raise_failure()
        if self.ready:
            return
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            raise HandshakeTimeout(
                f"engine not ready after {timeout}s (usiok/readyok not received)"
            ) from None
        if self._failure is not None:
            self._raise_failure()

    def submit(
        self,
        pending: PendingRequest,
        sfen: str,
        depth: int,
        multipv: int,
        threads: int | None = None,
        force_move: str | None = None,
    ) -> None:
        """Send the command sequence for one search.

        Must be called with the serializer held and ``pending`` open on it.
        """
        if not self._serializer.locked() or self._serializer.pending is not pending:
            raise RuntimeError("submit() requires the serializer lock and an open request")
        if not self.ready:
            raise RuntimeError(f"engine session is {self.state.value}")

        # The engine cannot be queried for MultiPV, so it is always sent
        self._send(f"setoption name MultiPV value {multipv}")
        if threads and threads != self.current_threads:
            self._send(f"setoption name Threads value {threads}")
            self.current_threads = threads
        self._send(build_position_command(sfen, force_move))
        self._send(f"go depth {depth}")
