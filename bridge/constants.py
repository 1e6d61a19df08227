"""
Bridge constants: protocol tokens, search defaults, and timing parameters.

All numeric constants used by the session manager and the runner live here so
that the rest of the package never introduces its own magic numbers. The web
configuration layer reads its defaults from this module; environment
variables override them at startup.
"""

# ---------------------------------------------------------------------------
# UCI tokens
# ---------------------------------------------------------------------------
# Commands written to the engine's stdin and the acknowledgement lines we
# wait for on its stdout. Fairy-Stockfish follows plain UCI for all of these.

CMD_UCI: str = "uci"
CMD_ISREADY: str = "isready"
CMD_QUIT: str = "quit"

ACK_UCIOK: str = "uciok"
ACK_READYOK: str = "readyok"

BESTMOVE_TOKEN: str = "bestmove"

# Move tokens an engine uses to say "there is no legal move".
NULL_MOVES: frozenset[str] = frozenset({"(none)", "0000"})

# First words of a line that reports a rejected position or command.
# Matched case-insensitively, optionally after an "info string" prefix.
REJECTION_PREFIXES: tuple[str, ...] = ("illegal", "invalid", "error")

# ---------------------------------------------------------------------------
# Variant
# ---------------------------------------------------------------------------

# Fairy-Stockfish variant selected on every engine unless configured otherwise.
DEFAULT_VARIANT: str = "chessdragon"

# ---------------------------------------------------------------------------
# Search defaults
# ---------------------------------------------------------------------------

DEFAULT_DEPTH: int = 15
MAX_DEPTH: int = 30

# Depth used by the variant self-check. Shallow on purpose: it only proves
# the engine starts, loads the variant, and answers.
SELF_CHECK_DEPTH: int = 3
SELF_CHECK_POSITION: str = "startpos"

# ---------------------------------------------------------------------------
# Timing (seconds)
# ---------------------------------------------------------------------------

ENGINE_TIMEOUT: float = 30.0
SELF_CHECK_TIMEOUT: float = 10.0

# How long a process may take to exit on its own after "quit" before it is
# killed.
QUIT_GRACE_PERIOD: float = 2.0

# ---------------------------------------------------------------------------
# Resource limits
# ---------------------------------------------------------------------------

MAX_CONCURRENT_ENGINES: int = 4

# Longest single engine output line accepted, in bytes (asyncio defaults to
# 64 KiB).
STREAM_LIMIT: int = 1024 * 1024
