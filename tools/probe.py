#!/usr/bin/env python3
"""
Probe: run a handful of positions through the configured engine.

Uses the same settings (CHESS_GATEWAY_* environment variables) and the same
EngineRunner as the web app, so a clean run here means the deployed gateway
will be able to start the engine, load the variant, and get moves back.
Each position gets its own engine process, exactly as an HTTP request would.

Usage: python3 tools/probe.py [--depth N] [FEN ...]
"""
import argparse
import asyncio
import os
import sys
import time

# Make the repo's packages importable when run as `python3 tools/probe.py`.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from bridge.errors import EngineError
from bridge.runner import EngineRunner
from web.config import load_settings

# Standard-chess positions. The default chessdragon variant starts from its
# own position, so either pass variant FENs on the command line or run with
# CHESS_GATEWAY_VARIANT=none CHESS_GATEWAY_VARIANT_PATH=none.
POSITIONS = [
    ("Start",        "startpos"),
    ("After 1.e4",   "startpos moves e2e4"),
    ("Italian",      "startpos moves e2e4 e7e5 g1f3 b8c6 f1c4"),
    ("Mid-open",     "r1bqkb1r/pppp1ppp/2n2n2/4p3/2B1P3/5N2/PPPP1PPP/RNBQK2R w KQkq - 4 4"),
    ("Rook ending",  "8/5pk1/6p1/7p/7P/6P1/5PK1/8 w - - 0 1"),
]


async def probe(runner: EngineRunner, positions: list[tuple[str, str]], depth: int) -> int:
    """Run every position, print one row each, and return the failure count."""
    failures = 0
    for label, position in positions:
        start = time.monotonic()
        try:
            result = await runner.best_move(position, depth)
            move, status, lines = result.best_move, "ok", len(result.analysis)
        except EngineError as exc:
            failures += 1
            move, status, lines = "-", type(exc).__name__, len(exc.analysis)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        print(f"{label:<14} {move:<8} {lines:>6} {elapsed_ms:>9,}  {status}")
    return failures


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--depth", type=int, default=None, help="search depth")
    parser.add_argument("fens", nargs="*", help="positions to probe instead of the built-ins")
    args = parser.parse_args()

    settings = load_settings()
    runner = EngineRunner(
        settings.engine_command,
        variant_path=settings.variant_path,
        variant_name=settings.variant_name,
        timeout=settings.engine_timeout,
        default_depth=settings.default_depth,
        max_depth=settings.max_depth,
        max_concurrent=1,
    )
    depth = runner.resolve_depth(args.depth)
    positions = [(f"#{i + 1}", fen) for i, fen in enumerate(args.fens)] or POSITIONS

    print(f"Engine: {' '.join(runner.command)}")
    if settings.variant_name:
        print(f"Variant: {settings.variant_name} ({settings.variant_path})")
    print(f"Depth: {depth}")
    print()
    print(f"{'Position':<14} {'Move':<8} {'Lines':>6} {'Time(ms)':>9}  Status")
    print("-" * 52)

    failures = asyncio.run(probe(runner, positions, depth))
    print("-" * 52)
    print(f"{len(positions) - failures}/{len(positions)} positions answered")
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
