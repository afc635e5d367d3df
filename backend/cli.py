import argparse
import asyncio
import logging

from engine import AIEngine
from settings import settings


def format_variant(info: dict) -> str:
    if "mate" in info:
        score = f"mate {info['mate']}"
    elif "score_cp" in info:
        score = f"cp {info['score_cp']}"
    else:
        score = "-"
    pv = " ".join(info.get("pv", []))
    return f"  {info.get('multipv', '?')}. depth={info.get('depth', '-')} score={score} pv={pv}"


async def run(args: argparse.Namespace) -> int:
    engine = AIEngine.from_settings(settings)
    await engine.start()
    try:
        result = await engine.analyze(
            args.sfen,
            min(args.depth, settings.max_depth),
            min(args.multipv, settings.max_multipv),
            threads=max(1, min(args.threads, settings.max_threads)),
            force_move=args.move,
        )
    finally:
        await engine.close()

    print(f"Engine: {engine.engine_name or settings.engine_path}")
    print(f"Best move: {result.bestmove}")
    print("Variants:")
    for info in result.infos:
        print(format_variant(info))
    return 0


def main():
    p = argparse.ArgumentParser(description="Shogi engine bridge (CLI)")
    p.add_argument("--sfen", required=True, help='SFEN string, or "startpos [moves ...]"')
    p.add_argument("--depth", type=int, default=18, help="Search depth")
    p.add_argument("--multipv", type=int, default=settings.default_multipv, help="Number of candidate lines")
    p.add_argument("--threads", type=int, default=settings.engine_threads, help="Engine threads")
    p.add_argument("--move", default=None, help="Play this USI move (e.g., 7g7f) before analysing")
    args = p.parse_args()

    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.WARNING)
    raise SystemExit(asyncio.run(run(args)))

if __name__ == "__main__":
    main()
