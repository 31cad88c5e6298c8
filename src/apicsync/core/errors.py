"""
Error kinds raised by the reconciliation core.

- TransportError: no interpretable response (connection, timeout, protocol).
- RemoteError: the APIC understood the request and rejected it (imdata error).
- MalformedAttributes: the payload could not be built locally. Never retried.
- DecodeError: a successful response held a value the projector cannot normalise.

Every error carries the object context (dn, method, attempts) so the caller
can log it without re-deriving anything.
"""

from __future__ import annotations

from typing import Optional


class ReconcileError(Exception):
    """Base error with object/attempt context."""

    def __init__(self, message: str = "", *, dn: str = "", method: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.dn = dn
        self.method = method
        self.attempts = attempts

    def with_context(self, *, dn: str, method: str, attempts: int) -> "ReconcileError":
        self.dn = dn
        self.method = method
        self.attempts = attempts
        return self

    def _detail(self) -> str:
        return self.message

    def __str__(self) -> str:
        base = f"{type(self).__name__}: {self._detail()}"
        ctx = []
        if self.dn:
            ctx.append(f"dn={self.dn}")
        if self.method:
            ctx.append(f"method={self.method}")
        if self.attempts:
            ctx.append(f"attempts={self.attempts}")
        if ctx:
            base += " (" + ", ".join(ctx) + ")"
        return base


class TransportError(ReconcileError):
    """HTTP/transport failure before any imdata tree exists."""

    def __init__(self, message: str = "", *, status: int = 0, url: str = "", body: str = "", **ctx) -> None:
        super().__init__(message, **ctx)
        self.status = status
        self.url = url
        self.body = body

    def _detail(self) -> str:
        out = f"status={self.status}, url={self.url}"
        if self.message:
            out += f": {self.message}"
        if self.body:
            out += f" body={self.body[:200]}"
        return out


class RemoteError(ReconcileError):
    """imdata error entry: numeric code + text."""

    def __init__(self, code: Optional[int], message: str = "", **ctx) -> None:
        super().__init__(message, **ctx)
        self.code = code

    def _detail(self) -> str:
        return f"code={self.code}: {self.message}"


class MalformedAttributes(ReconcileError):
    """An attribute cannot be sent as a string to the APIC."""

    def __init__(self, key: str, message: str = "", **ctx) -> None:
        super().__init__(message or f"attribute {key!r} is not representable as a string", **ctx)
        self.key = key


class DecodeError(ReconcileError):
    """A response value could not be normalised by the projector."""

    def __init__(self, key: str, raw: str = "", message: str = "", **ctx) -> None:
        super().__init__(message or f"cannot decode value of {key!r}", **ctx)
        self.key = key
        self.raw = raw

    def _detail(self) -> str:
        return f"{self.message} raw={self.raw[:100]}"


# Errors a retry policy may absorb; MalformedAttributes is never retried.
RETRYABLE_ERRORS = (TransportError, RemoteError, DecodeError)
