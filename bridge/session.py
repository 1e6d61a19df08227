"""
Engine session: one UCI conversation with one engine subprocess.

An EngineSession turns a (position, depth) pair into a MoveResult by starting
the engine, walking it through the UCI handshake, and waiting for its
"bestmove" line. Sessions are single-use: each HTTP request gets a fresh
process, and the process never outlives the session.

State machine:
    CREATED → AWAITING_IDENTIFICATION → AWAITING_READY → SEARCHING → RESOLVED

    "uci" is written on start. Configuration is only sent after "uciok", and
    the position and search only after "readyok", so engines that discard
    input while they initialize still see every command.

Resolution:
    Several independent events can end a session: a bestmove line, a
    rejection line, the process exiting, or the timeout timer. They all go
    through _settle(), which writes the single-assignment result future. The
    first writer wins; every later event finds the future done and does
    nothing. RESOLVED is absorbing.

Concurrency model:
    Everything runs on the asyncio event loop. Stdout and stderr are read by
    two tasks, the deadline is a loop.call_later() handle. No locks are
    needed: sessions share no state, and callbacks for one session never run
    concurrently with each other.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Sequence

from bridge.constants import (
    ACK_READYOK,
    ACK_UCIOK,
    DEFAULT_DEPTH,
    ENGINE_TIMEOUT,
    QUIT_GRACE_PERIOD,
    STREAM_LIMIT,
)
from bridge.errors import (
    EngineClosedPrematurely,
    EngineError,
    EngineLaunchFailed,
    EngineOutputError,
    EngineRejectedPosition,
    EngineTimeout,
)
from interface import uci

_log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    """Lifecycle stage of an EngineSession."""

    CREATED = "created"
    AWAITING_IDENTIFICATION = "awaiting_identification"
    AWAITING_READY = "awaiting_ready"
    SEARCHING = "searching"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class MoveResult:
    """
    Outcome of a successful session.

    Attributes:
        best_move: The engine's chosen move token (e.g. "e2e4").
        analysis:  Every non-blank stdout line received up to and including
                   the bestmove line, in arrival order.
    """

    best_move: str
    analysis: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize to the JSON body returned to the client."""
        return {"bestMove": self.best_move, "analysis": list(self.analysis)}


class EngineSession:
    """
    One engine subprocess conversation, resolved exactly once.

    Attributes:
        command:      argv used to start the engine.
        position:     FEN string (or "startpos ...") to search.
        depth:        Search depth passed to "go depth".
        timeout:      Seconds from process start until the session gives up.
        variant_path: Optional variants .ini path for the VariantPath option.
        variant_name: Optional variant for the UCI_Variant option.
        stream_limit: Longest stdout line accepted, in bytes.
        state:        Current SessionState.
        analysis:     Non-blank stdout lines received so far.
        best_move:    The move once found, else None.
        process:      The asyncio subprocess, once started.
    """

    def __init__(
        self,
        command: Sequence[str],
        position: str,
        depth: int = DEFAULT_DEPTH,
        *,
        timeout: float = ENGINE_TIMEOUT,
        variant_path: str | None = None,
        variant_name: str | None = None,
        stream_limit: int = STREAM_LIMIT,
    ) -> None:
        self.command: list[str] = [str(part) for part in command]
        self.position = position
        self.depth = depth
        self.timeout = timeout
        self.variant_path = variant_path
        self.variant_name = variant_name
        self.stream_limit = stream_limit

        self.state: SessionState = SessionState.CREATED
        self.analysis: list[str] = []
        self.best_move: str | None = None
        self.process: asyncio.subprocess.Process | None = None
        self._result: asyncio.Future | None = None

    @property
    def resolved(self) -> bool:
        """True once the session has produced its result or error."""
        return self.state is SessionState.RESOLVED

    # -----------------------------------------------------------------------
    # Public entry point
    # -----------------------------------------------------------------------

    async def run(self) -> MoveResult:
        """
        Start the engine and wait for the conversation to resolve.

        Returns:
            MoveResult with the engine's best move and collected analysis.

        Raises:
            EngineLaunchFailed:      The process could not be started.
            EngineRejectedPosition:  The engine refused the position or had
                                     no legal move.
            EngineClosedPrematurely: The process exited without a move.
            EngineOutputError:       A stdout line exceeded stream_limit.
            EngineTimeout:           No move before the deadline.
            RuntimeError:            run() was called twice.
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError("EngineSession.run() may only be called once")

        loop = asyncio.get_running_loop()
        self._result = loop.create_future()

        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=self.stream_limit,
            )
        except OSError as exc:
            self.state = SessionState.RESOLVED
            _log.warning("Engine spawn failed for %s: %s", self.command[0], exc)
            raise EngineLaunchFailed(f"Engine error: {exc}") from exc

        _log.info(
            "Engine started pid=%d depth=%d position=%s",
            self.process.pid,
            self.depth,
            self.position[:60],
        )

        timer = loop.call_later(self.timeout, self._on_timeout)
        readers = [
            asyncio.create_task(self._read_stdout()),
            asyncio.create_task(self._drain_stderr()),
        ]
        try:
            self._send(uci.uci_command())
            self.state = SessionState.AWAITING_IDENTIFICATION
            return await self._result
        finally:
            timer.cancel()
            await self._shutdown()
            for task in readers:
                task.cancel()
            await asyncio.gather(*readers, return_exceptions=True)

    # -----------------------------------------------------------------------
    # Event handlers
    # -----------------------------------------------------------------------

    def _on_line(self, line: str) -> None:
        """
        Handle one line of engine stdout.

        Drives the handshake forward and detects the terminal lines. Ignored
        entirely once the session is resolved.
        """
        if not line or self.resolved:
            return

        self.analysis.append(line)
        _log.debug("engine[%d] > %s", self.process.pid, line)

        move = uci.parse_bestmove(line)
        if move is not None:
            self._send(uci.quit_command())
            if uci.is_null_move(move):
                self._settle(
                    error=EngineRejectedPosition(
                        "Engine found no legal move in this position",
                        details=line,
                        analysis=self.analysis,
                    )
                )
                return
            self.best_move = move
            self._settle(result=MoveResult(move, list(self.analysis)))
            return

        if uci.is_rejection(line):
            self._send(uci.quit_command())
            self._settle(
                error=EngineRejectedPosition(
                    "Invalid position or move", details=line, analysis=self.analysis
                )
            )
            return

        if self.state is SessionState.AWAITING_IDENTIFICATION and line == ACK_UCIOK:
            for command in uci.variant_commands(self.variant_path, self.variant_name):
                self._send(command)
            self._send(uci.isready_command())
            self.state = SessionState.AWAITING_READY
        elif self.state is SessionState.AWAITING_READY and line == ACK_READYOK:
            self._send(uci.position_command(self.position))
            self._send(uci.go_command(self.depth))
            self.state = SessionState.SEARCHING

    def _on_exit(self, exit_code: int | None) -> None:
        """Handle the process exiting (stdout reached EOF)."""
        _log.info("Engine pid=%d exited with code %s", self.process.pid, exit_code)
        self._settle(error=EngineClosedPrematurely(exit_code, self.analysis))

    def _on_timeout(self) -> None:
        """Timer callback: kill the engine if nothing resolved the session yet."""
        if self._result.done():
            return
        _log.warning(
            "Engine pid=%d timed out after %gs (state=%s)",
            self.process.pid,
            self.timeout,
            self.state.value,
        )
        self._kill()
        self._settle(error=EngineTimeout(self.timeout, self.analysis))

    def _settle(
        self, result: MoveResult | None = None, error: EngineError | None = None
    ) -> bool:
        """
        Write the single-assignment result cell.

        Returns:
            True if this call resolved the session, False if it was already
            resolved and the call was ignored.
        """
        if self._result is None or self._result.done():
            return False
        self.state = SessionState.RESOLVED
        if error is not None:
            _log.warning("Engine session failed: %s", error.message)
            self._result.set_exception(error)
        else:
            _log.info("Engine best move: %s", result.best_move)
            self._result.set_result(result)
        return True

    # -----------------------------------------------------------------------
    # Stream readers
    # -----------------------------------------------------------------------

    async def _read_stdout(self) -> None:
        stdout = self.process.stdout
        try:
            while True:
                raw = await stdout.readline()
                if not raw:
                    break
                self._on_line(raw.decode("utf-8", errors="replace").strip())
        except Exception as exc:
            # A lost line may have been the bestmove, so the session cannot go on.
            _log.warning("Engine pid=%d stdout unreadable: %r", self.process.pid, exc)
            self._send(uci.quit_command())
            self._settle(
                error=EngineOutputError(
                    f"Engine output could not be read: {exc}", self.analysis
                )
            )
            return
        self._on_exit(await self.process.wait())

    async def _drain_stderr(self) -> None:
        # Stderr must be consumed or a chatty engine blocks on a full pipe.
        stderr = self.process.stderr
        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                # The reader drops the oversized line; keep draining.
                _log.warning("Engine stderr line over %d bytes dropped", self.stream_limit)
                continue
            if not raw:
                break
            text = raw.decode("utf-8", errors="replace").strip()
            if text:
                _log.warning("Engine stderr: %s", text)

    # -----------------------------------------------------------------------
    # Process helpers
    # -----------------------------------------------------------------------

    def _send(self, command: str) -> None:
        """Write one command line to the engine's stdin."""
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            _log.debug("engine[%d] stdin closed, dropping %r", self.process.pid, command)
            return
        _log.debug("engine[%d] < %s", self.process.pid, command)
        try:
            stdin.write(f"{command}\n".encode("utf-8"))
        except (BrokenPipeError, ConnectionResetError) as exc:
            _log.debug("engine[%d] stdin write failed: %s", self.process.pid, exc)

    def _kill(self) -> None:
        try:
            self.process.kill()
        except ProcessLookupError:
            pass

    async def _shutdown(self) -> None:
        """
        Make sure the process has exited and been reaped.

        After "quit" the engine normally exits on its own; it gets
        QUIT_GRACE_PERIOD seconds before it is killed.
        """
        process = self.process
        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), QUIT_GRACE_PERIOD)
            except asyncio.TimeoutError:
                _log.warning("Engine pid=%d did not exit after quit, killing", process.pid)
                self._kill()
                await process.wait()
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
