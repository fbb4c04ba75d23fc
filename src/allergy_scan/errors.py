"""
Allergy Scan - Error taxonomy.

ConnectivityError  - store or scan service unreachable (user retries)
ValidationError    - local precondition not met, never sent over the network
ServiceRejection   - the service refused the request (detail passed through)
StateViolation     - operation invoked in a stage that forbids it
"""


class AllergyScanError(Exception):
    """Base class for all allergy_scan errors."""


class ConnectivityError(AllergyScanError):
    """The allergen store or scanning service could not be reached."""


# Name used by the scanning session for the same condition
TransportError = ConnectivityError


class ValidationError(AllergyScanError):
    """A local precondition failed. The message names the missing precondition."""


class EmptyInputError(ValidationError):
    """Selection or payload is empty."""


class InvalidModeError(ValidationError):
    """Payload does not fit the active input mode (or no mode is set)."""


class UnknownAllergenError(ValidationError):
    """Allergen id is not part of the current catalog snapshot."""


class ServiceRejection(AllergyScanError):
    """The remote service rejected the request."""

    def __init__(self, detail: str, status_code: int | None = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


class StateViolation(AllergyScanError):
    """Operation is not allowed in the current stage. Programmer error."""
