"""
UCI (Universal Chess Interface) protocol helpers, client side.

UCI is the standard text-based protocol chess GUIs use to talk to engines.
Here we play the GUI role: the gateway writes commands to the engine's stdin
and reads newline-delimited responses from its stdout. This module holds the
pure, I/O-free half of that conversation: building command lines and
classifying the lines that come back. The stateful half lives in
bridge/session.py.

Protocol overview (handshake-gated, as used by bridge/session.py):
    Gateway → Engine: uci
    Engine → Gateway: id ..., option ..., uciok
    Gateway → Engine: setoption ... (variant), isready
    Engine → Gateway: readyok
    Gateway → Engine: position fen <FEN>, go depth <N>
    Engine → Gateway: info ..., bestmove <move> [ponder <move>]
    Gateway → Engine: quit

Only "bestmove" and the rejection lines change the outcome of a session;
"info" lines are collected verbatim as analysis for the client.
"""

from bridge.constants import (
    BESTMOVE_TOKEN,
    CMD_ISREADY,
    CMD_QUIT,
    CMD_UCI,
    NULL_MOVES,
    REJECTION_PREFIXES,
)


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------


def uci_command() -> str:
    """Return the identification command that opens every conversation."""
    return CMD_UCI


def isready_command() -> str:
    """Return the synchronization command answered by "readyok"."""
    return CMD_ISREADY


def quit_command() -> str:
    """Return the command that asks the engine process to exit."""
    return CMD_QUIT


def setoption_command(name: str, value: str) -> str:
    """
    Build a "setoption" line.

    Args:
        name:  Option name as advertised by the engine (e.g. "UCI_Variant").
        value: Option value, written verbatim.

    Returns:
        The command line without a trailing newline.
    """
    return f"setoption name {name} value {value}"


def variant_commands(variant_path: str | None, variant_name: str | None) -> list[str]:
    """
    Build the configuration commands sent between "uciok" and "isready".

    The variant file is an opaque resource: its path is handed to the engine
    untouched. The file must be loaded before the variant is selected, so the
    VariantPath option always comes first.

    Args:
        variant_path: Path to a Fairy-Stockfish variants .ini file, or None.
        variant_name: Variant to select (e.g. "chessdragon"), or None.

    Returns:
        Zero, one, or two "setoption" lines.
    """
    commands: list[str] = []
    if variant_path:
        commands.append(setoption_command("VariantPath", variant_path))
    if variant_name:
        commands.append(setoption_command("UCI_Variant", variant_name))
    return commands


def position_command(position: str) -> str:
    """
    Build the "position" command for a client-supplied position.

    Clients normally send a FEN string, which becomes "position fen <FEN>".
    A position beginning with "startpos" (optionally followed by
    "moves ...") is passed through as "position startpos ...".

    Args:
        position: FEN string or "startpos [moves ...]".

    Returns:
        The command line without a trailing newline.
    """
    position = position.strip()
    if position == "startpos" or position.startswith("startpos "):
        return f"position {position}"
    return f"position fen {position}"


def go_command(depth: int) -> str:
    """Build a fixed-depth search command."""
    return f"go depth {depth}"


# ---------------------------------------------------------------------------
# Output classifiers
# ---------------------------------------------------------------------------


def parse_bestmove(line: str) -> str | None:
    """
    Extract the move token from a "bestmove" line.

    Args:
        line: One line of engine output.

    Returns:
        The second whitespace-delimited token if the line is a bestmove line
        (e.g. "e2e4" for "bestmove e2e4 ponder e7e5"), the empty string if the
        line is a bare "bestmove" with no move, or None for any other line.
    """
    tokens = line.split()
    if not tokens or tokens[0] != BESTMOVE_TOKEN:
        return None
    return tokens[1] if len(tokens) > 1 else ""


def is_null_move(move: str) -> bool:
    """Return True if the engine's move token means "no legal move"."""
    return not move or move in NULL_MOVES


def is_rejection(line: str) -> bool:
    """
    Return True if the line reports an illegal or invalid position.

    Engines word these inconsistently ("Illegal move: ...", "Invalid FEN",
    "info string ERROR: ..."). We match the first word, case-insensitively,
    after stripping an optional "info string" prefix. Ordinary "info depth"
    lines never match.
    """
    tokens = line.split()
    if tokens[:2] == ["info", "string"]:
        tokens = tokens[2:]
    if not tokens:
        return False
    head = tokens[0].lower().rstrip(":")
    return head in REJECTION_PREFIXES
