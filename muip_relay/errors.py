"""Exception hierarchy shared by the relay core and its HTTP surface."""

from __future__ import annotations

from typing import Optional


class RelayError(RuntimeError):
    """Base class for every failure raised by muip-relay."""


class ValidationError(RelayError):
    """Raised when a required caller input is missing or empty."""


class MissingIdentifier(ValidationError):
    """Raised when the rate gate is asked to check an empty identifier."""


class RateLimited(RelayError):
    """Raised when an identifier is throttled by the rate gate."""

    def __init__(self, retry_after_ms: int, message: Optional[str] = None) -> None:
        self.retry_after_ms = max(0, int(retry_after_ms))
        super().__init__(
            message or f"Rate limit exceeded; retry after {self.retry_after_ms}ms"
        )

    @property
    def retry_after_seconds(self) -> int:
        # Round up so clients never retry before the block lifts.
        return -(-self.retry_after_ms // 1000)


class CryptoError(RelayError):
    """Base class for public-key encryption failures."""


class InvalidKey(CryptoError):
    """Raised when a PEM public key cannot be parsed or is not RSA."""


class EncryptionFailure(CryptoError):
    """Raised when a payload cannot be encrypted with the session key."""


class RemoteRejected(RelayError):
    """Raised when the dispatch API answers with a non-zero envelope code."""

    def __init__(self, stage: str, message: str, code: Optional[int] = None) -> None:
        self.stage = stage
        self.remote_message = message
        self.code = code
        super().__init__(f"{stage} rejected by dispatch (code={code}): {message}")


class TransportError(RelayError):
    """Raised when the dispatch API cannot be reached or answers garbage."""

    def __init__(
        self, stage: str, message: str, cause: Optional[BaseException] = None
    ) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} transport error: {message}")
