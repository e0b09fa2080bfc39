"""
Exceptions Module

Error taxonomy for the lending ledger. Storage failures are not wrapped
and reach the caller as raised by the backend.
"""


class LedgerError(Exception):
    """Base class for all lending ledger errors"""


class InvalidArgumentError(LedgerError, ValueError):
    """Raised when a caller passes a value the engine cannot accept.

    Always raised before anything is written.
    """


class NotFoundError(LedgerError, LookupError):
    """Raised when a loan reference does not resolve"""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")
