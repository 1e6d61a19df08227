"""
Engine runner: turns move requests into engine sessions.

The runner is the only object the web layer talks to. It validates the
request, normalizes the depth, and starts one fresh EngineSession per call.
Sessions are never pooled: every request pays the full engine start-up cost
and gets a process nobody else can touch.

The one shared resource is a semaphore capping how many engine processes run
at once. Requests beyond the cap wait for a slot for at most queue_timeout
seconds; the session timeout only starts once their own process is running.
"""

import asyncio
import logging
from typing import Sequence

from bridge.constants import (
    DEFAULT_DEPTH,
    ENGINE_TIMEOUT,
    MAX_CONCURRENT_ENGINES,
    MAX_DEPTH,
    SELF_CHECK_DEPTH,
    SELF_CHECK_POSITION,
    SELF_CHECK_TIMEOUT,
)
from bridge.errors import EngineTimeout, InvalidInput
from bridge.session import EngineSession, MoveResult

_log = logging.getLogger(__name__)


class EngineRunner:
    """
    Factory and concurrency gate for EngineSession objects.

    Attributes:
        command:        argv used to start each engine process.
        variant_path:   Optional variants .ini path sent to every engine.
        variant_name:   Optional variant name sent to every engine.
        timeout:        Per-session deadline in seconds.
        default_depth:  Depth used when the request omits one or sends <= 0.
        max_depth:      Upper bound applied to requested depths.
        max_concurrent: Maximum number of engine processes alive at once.
        queue_timeout:  Seconds a request may wait for a free slot. Defaults to
                        timeout.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        variant_path: str | None = None,
        variant_name: str | None = None,
        timeout: float = ENGINE_TIMEOUT,
        default_depth: int = DEFAULT_DEPTH,
        max_depth: int = MAX_DEPTH,
        max_concurrent: int = MAX_CONCURRENT_ENGINES,
        queue_timeout: float | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.command: list[str] = [str(part) for part in command]
        self.variant_path = variant_path
        self.variant_name = variant_name
        self.timeout = timeout
        self.default_depth = default_depth
        self.max_depth = max_depth
        self.max_concurrent = max_concurrent
        self.queue_timeout = timeout if queue_timeout is None else queue_timeout
        self.running: int = 0
        self._slots = asyncio.Semaphore(max_concurrent)

    def resolve_depth(self, depth: int | None) -> int:
        """
        Normalize a requested depth.

        Missing or non-positive depths fall back to default_depth; anything
        above max_depth is clamped so a client cannot pin an engine for the
        whole timeout.
        """
        if depth is None or depth <= 0:
            return self.default_depth
        return min(depth, self.max_depth)

    def new_session(
        self, position: str, depth: int, timeout: float | None = None
    ) -> EngineSession:
        """Build (but do not start) a session with this runner's settings."""
        return EngineSession(
            self.command,
            position,
            depth,
            timeout=self.timeout if timeout is None else timeout,
            variant_path=self.variant_path,
            variant_name=self.variant_name,
        )

    async def best_move(self, position: str | None, depth: int | None = None) -> MoveResult:
        """
        Ask a fresh engine process for the best move in a position.

        Args:
            position: FEN string (or "startpos ..."). Required.
            depth:    Requested search depth; see resolve_depth().

        Returns:
            MoveResult from the session.

        Raises:
            InvalidInput: position is missing or blank. No process is started.
            EngineError:  Any engine-side failure, see EngineSession.run().
        """
        if position is None or not position.strip():
            raise InvalidInput("FEN is required")
        session = self.new_session(position.strip(), self.resolve_depth(depth))
        return await self._run(session)

    async def self_check(self) -> MoveResult:
        """
        Run a shallow search from the start position.

        Proves the engine binary starts and accepts the configured variant.
        """
        session = self.new_session(
            SELF_CHECK_POSITION, SELF_CHECK_DEPTH, timeout=SELF_CHECK_TIMEOUT
        )
        return await self._run(session)

    async def _run(self, session: EngineSession) -> MoveResult:
        try:
            await asyncio.wait_for(self._slots.acquire(), self.queue_timeout)
        except asyncio.TimeoutError:
            _log.warning(
                "No engine slot free after %gs (%d running)", self.queue_timeout, self.running
            )
            raise EngineTimeout(
                self.queue_timeout,
                message=f"Engine busy - no slot free within {self.queue_timeout:g} seconds",
            ) from None
        self.running += 1
        try:
            return await session.run()
        finally:
            self.running -= 1
            self._slots.release()
