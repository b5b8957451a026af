"""Core primitives for muip-relay."""

from .models import (
    AuthorizedSession,
    CommandResult,
    Envelope,
    PipelineStage,
    Session,
)
from .rate_gate import RateDecision, RateGate, RateRecord

__all__ = [
    "AuthorizedSession",
    "CommandResult",
    "Envelope",
    "PipelineStage",
    "RateDecision",
    "RateGate",
    "RateRecord",
    "Session",
]
