"""feishu-bridge exception hierarchy.

All bridge-specific exceptions inherit from BridgeError,
enabling structured error handling and cleaner catch clauses.
"""


class BridgeError(Exception):
    """Base exception for all feishu-bridge errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ChannelError(BridgeError):
    """Error in channel send/receive operations."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class TransportError(ChannelError):
    """The Feishu open API rejected a call or could not be reached."""

    def __init__(
        self,
        message: str = "",
        *,
        code: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.code = code


class ConfigError(BridgeError):
    """Invalid or missing configuration."""
