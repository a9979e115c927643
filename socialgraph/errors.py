"""
Typed failures raised by the service layer.

Services never know about HTTP; every failure carries a stable ErrorKind that
the request-handling layer translates to a status code (see apps/common.py).
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    INVALID_INPUT = "invalid_input"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


# ── Not found ─────────────────────────────────────────────────────────────

class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND


# ── Forbidden ─────────────────────────────────────────────────────────────

class Forbidden(ServiceError):
    kind = ErrorKind.FORBIDDEN


class NotRecipient(Forbidden):
    """Only the recipient of a pending request may accept or reject it."""


class NotInitiator(Forbidden):
    """Only the sender of a pending request may cancel it."""


class NotBlocker(Forbidden):
    """Only the user who placed a block may lift it."""


class BlockedRelationship(Forbidden):
    pass


class NotGroupAdmin(Forbidden):
    pass


class CreatorCannotBeRemoved(Forbidden):
    pass


# ── Conflict ──────────────────────────────────────────────────────────────

class Conflict(ServiceError):
    kind = ErrorKind.CONFLICT


class AlreadyExists(Conflict):
    pass


class RequestAlreadyExists(Conflict):
    pass


class AlreadyMember(Conflict):
    pass


# ── Invalid state ─────────────────────────────────────────────────────────

class InvalidState(ServiceError):
    kind = ErrorKind.INVALID_STATE


class NotFriends(InvalidState):
    pass


class NotMember(InvalidState):
    pass


class CreatorCannotLeave(InvalidState):
    pass


# ── Invalid input ─────────────────────────────────────────────────────────

class InvalidInput(ServiceError):
    kind = ErrorKind.INVALID_INPUT


class SelfRelationship(InvalidInput):
    pass


# ── Upstream ──────────────────────────────────────────────────────────────

class UpstreamError(ServiceError):
    """A call to another service failed (transport error, timeout, 5xx)."""

    kind = ErrorKind.UPSTREAM
