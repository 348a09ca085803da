"""Exception taxonomy for the reactivity engine.

Identifiers without a mapping are reported as ``None`` and partial coverage
as counts on the returned records; only collaborator failures raise.
"""
from __future__ import annotations


class ReactivityEngineError(RuntimeError):
    """Base class for errors raised by the engine."""


class UpstreamFailure(ReactivityEngineError):
    """Raised when a fetch or persistence collaborator itself fails."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        super().__init__(message or f"Upstream operation '{operation}' failed")


__all__ = ["ReactivityEngineError", "UpstreamFailure"]
