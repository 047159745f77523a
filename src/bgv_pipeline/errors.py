"""Error types raised by the comparison engine and the check workflow."""

from __future__ import annotations

from typing import Any, Dict, Optional


class BgvError(Exception):
    code: str = "BGV_ERROR"

    def __init__(self, message: str, check_id: Optional[str] = None, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.check_id = check_id
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.check_id:
            out["checkId"] = self.check_id
        if self.details:
            out["details"] = self.details
        return out


class InputError(BgvError, ValueError):
    """Irrecoverable input problem; the check is marked FAILED."""

    code = "BGV_INPUT_INVALID"


class UnknownInstructionError(InputError):
    code = "BGV_UNKNOWN_INSTRUCTION"


class CheckNotFoundError(BgvError, LookupError):
    code = "BGV_CHECK_NOT_FOUND"


class CaseNotFoundError(BgvError, LookupError):
    code = "BGV_CASE_NOT_FOUND"


class InvalidStateError(BgvError):
    """Transition not allowed from the check's current state."""

    code = "BGV_INVALID_STATE"


class StaleStateError(InvalidStateError):
    """Write raced with (or arrived after) another accepted write."""

    code = "BGV_STALE_STATE"


class ConfigError(BgvError):
    """Malformed engine configuration; the check itself is left untouched."""

    code = "BGV_CONFIG_INVALID"
