from typing import List, Optional


class PKIError(Exception):
    """Base class for errors surfaced to API callers with a stable code."""

    code = "PKI_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PKIError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors) if errors else [message]


class StateConflictError(PKIError):
    code = "STATE_CONFLICT"
    status_code = 409


class NotFoundError(PKIError):
    code = "NOT_FOUND"
    status_code = 404


class EncodingError(PKIError):
    code = "ENCODING_ERROR"
    status_code = 422


class CustodyError(PKIError):
    """A key custody call failed.

    ``key_material_touched`` is True when the failed call may have mutated
    custodial state (a timed out or 5xx answered revoke, destroy, create or
    certify) and an operator has to reconcile the key store by hand.
    """

    code = "CUSTODY_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        operation: str = "",
        retryable: bool = False,
        key_material_touched: bool = False,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.retryable = retryable
        self.key_material_touched = key_material_touched
        self.status = status


class KeyAlreadyRevokedError(CustodyError):
    pass


class CRLUnavailableError(PKIError):
    """A CRL row exists but holds no signed document yet."""

    code = "CRL_UNAVAILABLE"
    status_code = 503
