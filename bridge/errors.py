"""
Exception taxonomy for the engine bridge.

Every failure a move request can hit is one of these classes. The web layer
maps InvalidInput to a 400 response and every EngineError to a 500 response
carrying the diagnostic output gathered so far.
"""


class GatewayError(Exception):
    """Base class for all errors raised by the bridge."""


class InvalidInput(GatewayError):
    """The request is unusable (missing or blank position)."""


class EngineError(GatewayError):
    """
    Base class for failures that originate from the engine conversation.

    Attributes:
        analysis: Non-blank stdout lines received before the failure, in order.
    """

    def __init__(self, message: str, analysis: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.analysis: list[str] = list(analysis or [])

    def to_dict(self) -> dict:
        """Serialize to the JSON body returned to the client."""
        return {"error": self.message, "analysis": self.analysis}


class EngineLaunchFailed(EngineError):
    """The operating system refused to start the engine process."""


class EngineRejectedPosition(EngineError):
    """
    The engine reported the position as illegal or had no move to offer.

    Attributes:
        details: The engine output line that triggered the rejection.
    """

    def __init__(self, message: str, details: str, analysis: list[str] | None = None) -> None:
        super().__init__(message, analysis)
        self.details = details

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["details"] = self.details
        return body


class EngineClosedPrematurely(EngineError):
    """
    The engine process exited before announcing a best move.

    Attributes:
        exit_code: The process return code.
    """

    def __init__(self, exit_code: int | None, analysis: list[str] | None = None) -> None:
        super().__init__("Engine closed without providing best move", analysis)
        self.exit_code = exit_code

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["exitCode"] = self.exit_code
        return body


class EngineOutputError(EngineError):
    """The engine's output stream could not be read (e.g. a line over the size limit)."""


class EngineTimeout(EngineError):
    """
    No best move arrived before the deadline.

    Raised when a running engine is killed at its deadline, and when a request
    finds no free engine slot within the runner's queue timeout.

    Attributes:
        timeout: The deadline in seconds.
    """

    def __init__(
        self,
        timeout: float,
        analysis: list[str] | None = None,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message or f"Engine timeout - no response within {timeout:g} seconds",
            analysis,
        )
        self.timeout = timeout
