"""
Typed rejections returned by the scheduling core.

Guard clauses hand one of these back instead of raising, so a caller can
tell a busy provider from a missing entry without parsing messages. The
routers turn them into HTTP errors.
"""
import enum
from dataclasses import dataclass
from typing import Any

from fastapi import HTTPException, status


class RejectionKind(str, enum.Enum):
    validation = "validation"
    conflict = "conflict"
    capacity = "capacity"
    not_found = "not_found"
    unavailable = "unavailable"


_HTTP_STATUS = {
    RejectionKind.validation: status.HTTP_400_BAD_REQUEST,
    RejectionKind.conflict: status.HTTP_409_CONFLICT,
    RejectionKind.capacity: status.HTTP_409_CONFLICT,
    RejectionKind.not_found: status.HTTP_404_NOT_FOUND,
    RejectionKind.unavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@dataclass(frozen=True)
class Rejection:
    kind: RejectionKind
    reason: str
    message: str
    retryable: bool = False

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self.kind]

    def to_detail(self) -> dict:
        return {
            "kind": self.kind.value,
            "reason": self.reason,
            "message": self.message,
            "retryable": self.retryable,
        }


def validation(reason: str, message: str) -> Rejection:
    return Rejection(RejectionKind.validation, reason, message)


def conflict(reason: str, message: str, retryable: bool = True) -> Rejection:
    return Rejection(RejectionKind.conflict, reason, message, retryable)


def capacity(reason: str, message: str) -> Rejection:
    return Rejection(RejectionKind.capacity, reason, message, retryable=True)


def not_found(what: str, ident: Any) -> Rejection:
    return Rejection(RejectionKind.not_found, f"{what}_not_found", f"{what.replace('_', ' ').capitalize()} {ident} not found")


def unavailable(reason: str, message: str) -> Rejection:
    return Rejection(RejectionKind.unavailable, reason, message, retryable=True)


def is_rejection(result: Any) -> bool:
    return isinstance(result, Rejection)


def raise_for_rejection(result: Any) -> Any:
    """
    Pass a successful result through; turn a Rejection into an HTTPException.

    Raises:
        HTTPException: If the result is a Rejection
    """
    if isinstance(result, Rejection):
        raise HTTPException(status_code=result.http_status, detail=result.to_detail())
    return result


def commit_or_raise(db, result: Any) -> Any:
    """
    Commit the request's session on success. On a rejection, roll back
    everything the operation wrote and raise the matching HTTPException.
    """
    if isinstance(result, Rejection):
        db.rollback()
        raise_for_rejection(result)
    db.commit()
    return result
