# errors.py
from __future__ import annotations

import re
from typing import Optional


class AdmGateError(Exception):
    """Base for everything this controller raises on purpose."""


class StoreError(AdmGateError):
    """A resource store call failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFound(StoreError):
    pass


class Conflict(StoreError):
    """resourceVersion race: re-read and retry."""


class PermissionDenied(StoreError):
    pass


class TypeMismatch(AdmGateError):
    """The server returned an object shape we cannot interpret."""


class NotReady(AdmGateError):
    """No CA bundle yet for a webhook service; wait for cert sync."""


class Unsupported(AdmGateError):
    pass


class ReconcileFailed(AdmGateError):
    def __init__(self, name: str, op: str, last_error: Optional[BaseException], attempts: int):
        self.name = name
        self.op = op
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"failed to configure {name} (op={op or 'none'}, attempts={attempts}): {last_error}"
        )


_FORBIDDEN = re.compile(r"\b403\b.*forbidden|forbidden.*\b403\b", re.IGNORECASE | re.DOTALL)


def is_permission_error(err: BaseException) -> bool:
    if isinstance(err, PermissionDenied):
        return True
    return bool(_FORBIDDEN.search(str(err)))
