from enum import Enum
from typing import Any, NamedTuple


class Outcome(str, Enum):
    """Result classification shared by every controller operation."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    CAPABILITY_MISMATCH = "capability_mismatch"
    MALFORMED_PAYLOAD = "malformed_payload"
    TRANSPORT_FAILURE = "transport_failure"


class OperationResult(NamedTuple):
    outcome: Outcome
    payload: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS


class LightingError(Exception):
    """Base class for every error raised by the lighting core"""

    outcome: Outcome = Outcome.TRANSPORT_FAILURE


class NotFound(LightingError):
    """Device id is not in the current registry"""

    outcome = Outcome.NOT_FOUND


class CapabilityMismatch(LightingError):
    """Operation is structurally unsupported by the resolved device"""

    outcome = Outcome.CAPABILITY_MISMATCH


class MalformedPayload(LightingError):
    """Wire data from a device could not be decoded"""

    outcome = Outcome.MALFORMED_PAYLOAD


class TransportFailure(LightingError):
    """Underlying connect/send/receive failed"""

    outcome = Outcome.TRANSPORT_FAILURE
