"""Error taxonomy and classification for MCP Forgejo Server.

Every failure that can reach a client is a :class:`ForgejoMCPError` subclass
carrying a stable ``kind``. The dispatcher converts those into exactly one
correlated JSON-RPC error payload; anything else is classified as an opaque
``InternalFault``. ``FramingError`` is the one exception that is never
converted: it ends the connection.
"""

import logging
from typing import Any, Dict, Iterable, Optional

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

from .redaction import redact_value

logger = logging.getLogger(__name__)

# Application error codes, outside the JSON-RPC reserved range
CONTEXT_ERROR = -32010
AUTH_ERROR = -32020
UPSTREAM_ERROR = -32030
TIMEOUT_ERROR = -32040
REQUEST_CANCELLED = -32800


class ForgejoMCPError(Exception):
    """Base class for errors that are rendered to the client."""

    kind = "InternalFault"
    code = INTERNAL_ERROR

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind} message={self.message!r}>"


class FramingError(Exception):
    """Frame too large or stream ended mid-frame. Terminates the connection."""


class ParseError(ForgejoMCPError):
    kind = "ParseError"
    code = PARSE_ERROR


class InvalidRequestError(ForgejoMCPError):
    kind = "InvalidRequest"
    code = INVALID_REQUEST


class ToolNotFoundError(ForgejoMCPError):
    kind = "ToolNotFound"
    code = METHOD_NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", {"tool": name})
        self.name = name


class DuplicateToolError(Exception):
    """Raised at startup when two tools share a name."""


class RegistryFrozenError(Exception):
    """Raised when registering into a registry that is already serving."""


class ToolValidationError(ForgejoMCPError):
    """Parameters did not match the tool schema.

    ``errors`` holds one ``{"field", "message"}`` entry per failed constraint.
    """

    kind = "ValidationError"
    code = INVALID_PARAMS

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message, {"errors": errors} if errors else None)
        self.errors = errors or []


# Repository context errors


class ContextError(ForgejoMCPError):
    code = CONTEXT_ERROR
    kind = "ContextError"

    def __init__(self, message: str, path: Optional[str] = None, hint: Optional[str] = None):
        detail: Dict[str, Any] = {}
        if path:
            detail["path"] = path
        if hint:
            detail["hint"] = hint
        super().__init__(message, detail or None)
        self.path = path
        self.hint = hint


class NotARepositoryError(ContextError):
    kind = "NotARepository"


class NoRemoteError(ContextError):
    kind = "NoRemote"


class UnrecognizedHostError(ContextError):
    kind = "UnrecognizedHost"


class MalformedURLError(ContextError):
    kind = "MalformedURL"


class DetachedHeadError(ContextError):
    kind = "DetachedHead"


# Authentication errors


class AuthError(ForgejoMCPError):
    code = AUTH_ERROR
    kind = "AuthError"


class AuthMissingError(AuthError):
    kind = "AuthMissing"

    def __init__(self, message: str = "No credential configured. Set FORGEJO_TOKEN."):
        super().__init__(message)


class AuthInvalidError(AuthError):
    kind = "AuthInvalid"


class AuthUnreachableError(AuthError):
    kind = "AuthUnreachable"


class UpstreamError(ForgejoMCPError):
    """The remote API rejected or failed the call."""

    kind = "UpstreamError"
    code = UPSTREAM_ERROR

    def __init__(self, message: str, *, retryable: bool, status: Optional[int] = None):
        detail: Dict[str, Any] = {"retryable": retryable}
        if status is not None:
            detail["status"] = status
        super().__init__(message, detail)
        self.retryable = retryable
        self.status = status


class ToolTimeoutError(ForgejoMCPError):
    kind = "Timeout"
    code = TIMEOUT_ERROR


class RequestCancelledError(ForgejoMCPError):
    kind = "Cancelled"
    code = REQUEST_CANCELLED


class InternalFault(ForgejoMCPError):
    kind = "InternalFault"
    code = INTERNAL_ERROR

    def __init__(self, message: str = "Internal error while executing tool"):
        super().__init__(message)


def classify_exception(error: BaseException) -> ForgejoMCPError:
    """Map any exception raised below the dispatcher to a client-facing error.

    Known errors pass through unchanged. Everything else becomes an opaque
    ``InternalFault``; the original is only ever logged.
    """
    if isinstance(error, ForgejoMCPError):
        return error
    return InternalFault()


def to_error_payload(error: ForgejoMCPError, secrets: Iterable[str] = ()) -> Dict[str, Any]:
    """Render ``error`` as a JSON-RPC error object.

    ``kind`` is exposed both at the top level and inside ``data`` so that
    clients which only read ``data`` still see it.
    """
    data: Dict[str, Any] = {"kind": error.kind}
    if error.detail:
        data["detail"] = error.detail
    if isinstance(error, UpstreamError):
        data["retryable"] = error.retryable
    payload = {
        "code": error.code,
        "message": error.message,
        "kind": error.kind,
        "data": data,
    }
    return redact_value(payload, secrets)
