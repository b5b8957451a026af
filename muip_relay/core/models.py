"""Domain models for dispatch sessions and command results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class PipelineStage(str, Enum):
    CREATE_SESSION = "create_session"
    AUTHORIZE = "authorize"
    ENCRYPT = "encrypt"
    EXECUTE = "execute"
    QUERY = "query"


@dataclass(frozen=True, slots=True)
class Envelope:
    """Uniform dispatch response shape: ``{code, message, data}``."""

    code: int
    message: str = ""
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.code == 0

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


@dataclass(frozen=True, slots=True)
class Session:
    """Short-lived session issued by the dispatch API for one command cycle."""

    session_id: str
    public_key: str


@dataclass(frozen=True, slots=True)
class AuthorizedSession:
    session_id: str


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of ``exec_cmd``: an envelope on success, ``error`` otherwise."""

    code: int = 0
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_envelope(cls, envelope: Envelope) -> "CommandResult":
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return cls(code=envelope.code, message=envelope.message, data=dict(data))

    @classmethod
    def failure(cls, error: str) -> "CommandResult":
        return cls(error=error)

    def with_message(self, message: str) -> "CommandResult":
        data = dict(self.data)
        data["message"] = message
        return replace(self, data=data)

    def as_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "code": self.code,
            "message": self.message,
            "data": dict(self.data),
        }
