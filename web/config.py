"""
Runtime configuration for the web gateway.

Settings come from environment variables prefixed CHESS_GATEWAY_, falling back
to the defaults in bridge/constants.py. They are read once, when the app is
built, so a misconfigured deployment fails at startup rather than on the
first request.
"""

import os
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path

from bridge import constants

ENV_PREFIX = "CHESS_GATEWAY_"

# Repository root: engines/ and variants/ are resolved relative to it.
_REPO_ROOT = Path(__file__).resolve().parent.parent


def default_engine_path() -> Path:
    """Platform-specific location of the bundled Fairy-Stockfish binary."""
    name = "fairy-stockfish-largeboard_x86-64"
    if sys.platform == "win32":
        name += ".exe"
    return _REPO_ROOT / "engines" / name


def default_variant_path() -> Path:
    """Location of the bundled variants file that defines chessdragon."""
    return _REPO_ROOT / "variants" / "chessdragon.ini"


@dataclass(frozen=True)
class Settings:
    """
    Gateway settings.

    Attributes:
        engine_path:              Engine executable.
        engine_args:              Extra arguments for the engine executable.
        variant_path:             Variants .ini passed as VariantPath, or None to skip it.
        variant_name:             Variant passed as UCI_Variant, or None to skip it.
        default_depth:            Depth used when a request omits one.
        max_depth:                Upper bound for requested depths.
        engine_timeout:           Seconds before an engine session is killed.
        max_concurrent_engines:   Cap on simultaneous engine processes.
        stats_file:               JSON file the request tracker writes.
        stats_flush_interval:     Seconds between stats flushes.
        session_idle_timeout:     Seconds of inactivity that end a client session.
        session_cleanup_interval: Seconds between idle-session sweeps.
        log_level:                Root logging level name.
    """

    engine_path: str
    engine_args: tuple[str, ...] = ()
    variant_path: str | None = None
    variant_name: str | None = None
    default_depth: int = constants.DEFAULT_DEPTH
    max_depth: int = constants.MAX_DEPTH
    engine_timeout: float = constants.ENGINE_TIMEOUT
    max_concurrent_engines: int = constants.MAX_CONCURRENT_ENGINES
    stats_file: str = "stats.json"
    stats_flush_interval: float = 30.0
    session_idle_timeout: float = 30 * 60.0
    session_cleanup_interval: float = 10 * 60.0
    log_level: str = "INFO"

    @property
    def engine_command(self) -> list[str]:
        """argv used to start one engine process."""
        return [self.engine_path, *self.engine_args]


def _env(name: str) -> str | None:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_optional(name: str, default: str) -> str | None:
    # "none" switches an option off entirely (e.g. plain chess without a variant).
    value = _env(name)
    if value is None:
        return default
    if value.lower() == "none":
        return None
    return value


def _env_int(name: str, default: int) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from exc


def load_settings() -> Settings:
    """Build Settings from the environment."""
    return Settings(
        engine_path=_env("ENGINE_PATH") or str(default_engine_path()),
        engine_args=tuple(shlex.split(_env("ENGINE_ARGS") or "")),
        variant_path=_env_optional("VARIANT_PATH", str(default_variant_path())),
        variant_name=_env_optional("VARIANT", constants.DEFAULT_VARIANT),
        default_depth=_env_int("DEFAULT_DEPTH", constants.DEFAULT_DEPTH),
        max_depth=_env_int("MAX_DEPTH", constants.MAX_DEPTH),
        engine_timeout=_env_float("ENGINE_TIMEOUT", constants.ENGINE_TIMEOUT),
        max_concurrent_engines=_env_int(
            "MAX_CONCURRENT_ENGINES", constants.MAX_CONCURRENT_ENGINES
        ),
        stats_file=_env("STATS_FILE") or "stats.json",
        stats_flush_interval=_env_float("STATS_FLUSH_INTERVAL", 30.0),
        session_idle_timeout=_env_float("SESSION_IDLE_TIMEOUT", 30 * 60.0),
        session_cleanup_interval=_env_float("SESSION_CLEANUP_INTERVAL", 10 * 60.0),
        log_level=(_env("LOG_LEVEL") or "INFO").upper(),
    )
