"""Tests for the engine module."""
import asyncio
import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from engine import AIEngine, is_configured, request_timeout
from fake_usi import FakeFactory, settle
from settings import Settings
from usi import HandshakeTimeout, RequestTimeout, StartupFailure, UnexpectedExit

SPEC_SEARCH = [
    "info depth 10 multipv 1 score cp 120 nodes 500 nps 1000 pv 7g7f 3c3d",
    "info depth 10 multipv 2 score cp 80 pv 2g2f",
    "bestmove 7g7f",
]


async def started(factory: FakeFactory, **kwargs) -> AIEngine:
    engine = AIEngine("/opt/engine/fake", process_factory=factory, **kwargs)
    await engine.start()
    await settle()
    return engine


class TestEngineConfiguration:
    """Tests for engine configuration checks."""

    def test_is_configured_without_path(self):
        with patch('engine.settings') as mock_settings:
            mock_settings.engine_path = ""
            assert is_configured() is False

    def test_is_configured_with_nonexistent_path(self):
        with patch('engine.settings') as mock_settings:
            mock_settings.engine_path = "/nonexistent/path/engine"
            with patch('os.path.isfile', return_value=False):
                with patch('shutil.which', return_value=None):
                    assert is_configured() is False

    def test_is_configured_with_valid_file(self):
        with patch('engine.settings') as mock_settings:
            mock_settings.engine_path = "/usr/local/bin/engine"
            with patch('os.path.isfile', return_value=True):
                assert is_configured() is True

    def test_request_timeout_floor_and_scaling(self):
        assert request_timeout(5, 8.0, 0.4) == 8.0
        assert request_timeout(30, 8.0, 0.4) == pytest.approx(12.0)

    def test_from_settings(self):
        cfg = Settings(engine_path="/x/engine", engine_threads=3, engine_hash_mb=1024,
                       eval_file="nn.bin", ready_timeout=1.5)
        engine = AIEngine.from_settings(cfg)
        assert engine.engine_path == "/x/engine"
        assert engine.default_threads == 3
        assert engine.options.hash_mb == 1024
        assert engine.options.eval_file == "nn.bin"
        assert engine.ready_timeout == 1.5


class TestHandshake:
    """Tests for session startup."""

    @pytest.mark.asyncio
    async def test_handshake_and_defaults(self):
        factory = FakeFactory(name="Fake USI 7")
        engine = await started(factory, default_threads=2, default_hash_mb=128, eval_dir="/eval")
        assert engine.ready is True
        assert engine.engine_name == "Fake USI 7"
        assert factory.process.written == [
            "usi",
            "isready",
            "setoption name Threads value 2",
            "setoption name Hash value 128",
            "setoption name EvalDir value /eval",
        ]

    @pytest.mark.asyncio
    async def test_startup_failure_surfaces_to_callers(self):
        engine = await started(FakeFactory(fail_start=True))
        assert engine.ready is False
        with pytest.raises(StartupFailure):
            await engine.analyze("startpos", 10, 1)
        with pytest.raises(StartupFailure):
            await engine.analyze("startpos", 10, 1)

    @pytest.mark.asyncio
    async def test_handshake_timeout(self):
        engine = await started(FakeFactory(respond_ready=False), ready_timeout=0.05)
        with pytest.raises(HandshakeTimeout):
            await engine.analyze("startpos", 10, 1)

    @pytest.mark.asyncio
    async def test_analyze_waits_for_readiness(self):
        factory = FakeFactory(searches=[SPEC_SEARCH])
        engine = AIEngine("fake", process_factory=factory)
        await engine.start()
        # Handshake replies have not been delivered yet
        assert engine.ready is False
        result = await engine.analyze("startpos", 10, 2)
        assert result.bestmove == "7g7f"

    @pytest.mark.asyncio
    async def test_analyze_starts_engine_lazily(self):
        factory = FakeFactory(searches=[SPEC_SEARCH])
        engine = AIEngine("fake", process_factory=factory)
        result = await engine.analyze("startpos", 10, 2)
        assert result.bestmove == "7g7f"
        assert len(factory.instances) == 1


class TestAnalyze:
    """Tests for single analysis requests."""

    @pytest.mark.asyncio
    async def test_end_to_end(self):
        factory = FakeFactory(searches=[SPEC_SEARCH])
        engine = await started(factory)
        result = await engine.analyze("startpos", 10, 2)
        assert result.as_dict() == {
            "bestmove": "7g7f",
            "infos": [
                {"multipv": 1, "score_cp": 120, "depth": 10, "nodes": 500, "nps": 1000, "pv": ["7g7f", "3c3d"]},
                {"multipv": 2, "score_cp": 80, "depth": 10, "pv": ["2g2f"]},
            ],
        }
        assert factory.process.drains == 1
        assert factory.process.written[-3:] == [
            "setoption name MultiPV value 2",
            "position startpos",
            "go depth 10",
        ]

    @pytest.mark.asyncio
    async def test_rank_merge_order(self):
        factory = FakeFactory(searches=[[
            "info depth 8 multipv 2 score cp 40 pv 2g2f 8c8d",
            "info depth 8 multipv 1 score cp 90 nodes 1000 pv 7g7f",
            "info depth 9 multipv 1 pv 7g7f 3c3d",
            "info depth 9 multipv 3 score mate 3 pv 5i5h",
            "info string done",
            "bestmove 7g7f",
        ]])
        engine = await started(factory)
        result = await engine.analyze("startpos", 9, 3)
        assert [info["multipv"] for info in result.infos] == [1, 2, 3]
        assert result.infos[0] == {
            "multipv": 1,
            "depth": 9,
            "score_cp": 90,
            "nodes": 1000,
            "pv": ["7g7f", "3c3d"],
        }
        assert result.infos[2]["mate"] == 3

    @pytest.mark.asyncio
    async def test_forced_move_on_board_state(self):
        board = "lnsgkgsnl/1r5b1/ppppppppp/9/9/9/PPPPPPPPP/1B5R1/LNSGKGSNL b - 1"
        factory = FakeFactory()
        engine = await started(factory)
        await engine.analyze(board, 6, 1, force_move="7g7f")
        assert f"position sfen {board} moves 7g7f" in factory.process.written

    @pytest.mark.asyncio
    async def test_thread_override_and_restore(self):
        factory = FakeFactory()
        engine = await started(factory, default_threads=1)
        await engine.analyze("startpos", 4, 1, threads=4)
        await engine.analyze("startpos", 4, 1)
        await engine.analyze("startpos", 4, 1)
        thread_cmds = [line for line in factory.process.written if "Threads" in line]
        assert thread_cmds == [
            "setoption name Threads value 1",
            "setoption name Threads value 4",
            "setoption name Threads value 1",
        ]


class TestConcurrency:
    """Tests for request serialization."""

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_interleave(self):
        searches = [
            ["info depth 1 multipv 1 score cp 1 pv 7g7f", "bestmove 7g7f"],
            ["info depth 1 multipv 1 score cp 2 pv 2g2f", "bestmove 2g2f"],
            ["info depth 1 multipv 1 score cp 3 pv 5i5h", "bestmove 5i5h"],
        ]
        factory = FakeFactory(searches=searches, search_delay=0.01)
        engine = await started(factory)

        results = await asyncio.gather(
            engine.analyze("startpos", 1, 1),
            engine.analyze("startpos", 2, 2),
            engine.analyze("startpos", 3, 3),
        )

        assert [r.bestmove for r in results] == ["7g7f", "2g2f", "5i5h"]
        assert [r.infos[0]["score_cp"] for r in results] == [1, 2, 3]
        proc = factory.process
        assert proc.overlaps == 0

        # Each request's commands form one contiguous block answered before the next begins
        requests = [line for d, line in proc.transcript if d == ">" and line.startswith(("setoption name MultiPV", "go"))]
        assert requests == [
            "setoption name MultiPV value 1", "go depth 1",
            "setoption name MultiPV value 2", "go depth 2",
            "setoption name MultiPV value 3", "go depth 3",
        ]
        go_positions = [i for i, (d, line) in enumerate(proc.transcript) if line.startswith("go ")]
        best_positions = [i for i, (d, line) in enumerate(proc.transcript) if line.startswith("bestmove")]
        multipv_positions = [i for i, (d, line) in enumerate(proc.transcript) if "MultiPV" in line]
        for n in range(1, 3):
            assert go_positions[n - 1] < best_positions[n - 1] < multipv_positions[n]


class TestTimeouts:
    """Tests for deadline expiry and recovery."""

    @pytest.mark.asyncio
    async def test_timeout_then_recovery(self):
        factory = FakeFactory(searches=[None, SPEC_SEARCH])
        engine = await started(factory, timeout_floor=0.05, timeout_per_depth=0.0)
        with pytest.raises(RequestTimeout):
            await engine.analyze("startpos", 10, 2)
        result = await engine.analyze("startpos", 10, 2)
        assert result.bestmove == "7g7f"

    @pytest.mark.asyncio
    async def test_late_bestmove_is_ignored(self):
        factory = FakeFactory(searches=[["bestmove 1a1b"]], search_delay=0.1)
        engine = await started(factory, timeout_floor=0.02, timeout_per_depth=0.0)
        with pytest.raises(RequestTimeout):
            await engine.analyze("startpos", 10, 1)
        await asyncio.sleep(0.15)

        factory.process.search_delay = 0.0
        factory.process.searches.append(SPEC_SEARCH)
        result = await engine.analyze("startpos", 10, 2)
        assert result.bestmove == "7g7f"

    @pytest.mark.asyncio
    async def test_timeout_sends_stop(self):
        factory = FakeFactory(searches=[None, SPEC_SEARCH])
        engine = await started(factory, timeout_floor=0.05, timeout_per_depth=0.0)
        with pytest.raises(RequestTimeout):
            await engine.analyze("startpos", 10, 2)
        assert factory.process.written[-1] == "stop"

    @pytest.mark.asyncio
    async def test_stale_search_output_not_seen_by_next_request(self):
        # The engine ignores "stop" and finishes the abandoned search while
        # the next request is already in flight
        factory = FakeFactory(
            searches=[
                ["info depth 5 multipv 1 score cp 999 pv 1a1b", "bestmove 1a1b"],
                ["info depth 3 multipv 1 score cp 5 pv 2g2f", "bestmove 2g2f"],
            ],
            search_delay=0.1,
            honor_stop=False,
        )
        engine = await started(factory, timeout_floor=0.05, timeout_per_depth=0.01)
        with pytest.raises(RequestTimeout):
            await engine.analyze("startpos", 1, 1)

        result = await engine.analyze("sfen-second", 40, 1)
        assert result.bestmove == "2g2f"
        assert list(result.infos) == [{"depth": 3, "multipv": 1, "score_cp": 5, "pv": ["2g2f"]}]


class TestProcessExit:
    """Tests for engine termination."""

    @pytest.mark.asyncio
    async def test_exit_fails_outstanding_request(self):
        factory = FakeFactory(searches=[None])
        engine = await started(factory, timeout_floor=5.0)
        asyncio.get_running_loop().call_later(0.01, factory.process.crash, 9)
        with pytest.raises(UnexpectedExit, match="code=9"):
            await engine.analyze("startpos", 10, 1)
        assert engine.ready is False
        with pytest.raises(UnexpectedExit):
            await engine.analyze("startpos", 10, 1)

    @pytest.mark.asyncio
    async def test_auto_restart(self):
        factory = FakeFactory()
        engine = await started(factory, auto_restart=True)
        first = factory.process
        first.crash(1)
        await settle()
        assert len(factory.instances) == 2
        assert factory.process is not first
        assert engine.ready is True

        factory.process.searches.append(SPEC_SEARCH)
        result = await engine.analyze("startpos", 10, 2)
        assert result.bestmove == "7g7f"
        await engine.close()
        assert factory.process.closed is True

    @pytest.mark.asyncio
    async def test_close(self):
        factory = FakeFactory()
        engine = await started(factory)
        await engine.close()
        assert factory.process.closed is True
