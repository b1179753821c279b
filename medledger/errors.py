"""
Error types for MedLedger.

Every error aborts the operation that raised it; the surrounding
transaction is rolled back so no state or audit event survives.
"""


class RegistryError(Exception):
    """Base error for registry operations."""
    code = "REGISTRY_ERROR"


class ArgumentMismatch(RegistryError):
    """Provider and encrypted-key lists have different lengths."""
    code = "ARGUMENT_MISMATCH"

    def __init__(self, providers: int, keys: int):
        self.providers = providers
        self.keys = keys
        super().__init__(
            f"{providers} providers but {keys} encrypted keys"
        )


class RecordNotFound(RegistryError):
    """The referenced record id was never created."""
    code = "RECORD_NOT_FOUND"

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(f"Record {record_id} does not exist")


class Unauthorized(RegistryError):
    """Caller is not the creator of the record."""
    code = "UNAUTHORIZED"

    def __init__(self, record_id: int, caller: str):
        self.record_id = record_id
        self.caller = caller
        super().__init__(f"{caller} is not the owner of record {record_id}")


class ValidationError(RegistryError):
    """Raised when input validation fails."""
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")
