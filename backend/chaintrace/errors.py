# Overview: Error taxonomy shared by services and routes.

"""
Every service-layer failure raised to a route is one of these classes.
Routes translate them with ``jsonify(e.to_dict()), e.status_code``.

ORDERING GUARANTEE:
- ValidationError and AuthorizationError are raised before any chain call.
- ChainUnavailableError / ChainRejectionError come from the registry client.
- ConsistencyError is only raised after a chain call has confirmed.
"""
from __future__ import annotations


class ChainTraceError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": str(self)}


class ValidationError(ChainTraceError, ValueError):
    """400-level input problem, rejected before any chain interaction."""
    status_code = 400


class ConflictError(ChainTraceError):
    """409-level business rule conflict (duplicate partnership, email, request)."""
    status_code = 409


class NotFoundError(ChainTraceError):
    status_code = 404


class AuthenticationError(ChainTraceError):
    """Missing or invalid caller credential."""
    status_code = 401


class AuthorizationError(ChainTraceError):
    """Wrong role, or caller is not the owner/holder of the resource."""
    status_code = 403


class PartnershipRequiredError(AuthorizationError):
    """Gated product transfer to a recipient without an accepted partnership."""


class TransferFailedError(ChainTraceError):
    """No product was transferred by a consecutive-id transfer."""
    status_code = 400


class ChainUnavailableError(ChainTraceError):
    """Registry not configured or unreachable."""
    status_code = 503


class ChainTimeoutError(ChainUnavailableError):
    """
    A submitted transaction was not confirmed within CHAIN_TX_TIMEOUT_SECONDS.

    The transaction may still confirm later. defect_id is set once the
    in-doubt submission has been recorded for an operator.
    """

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.defect_id: int | None = None

    def to_dict(self) -> dict:
        data = {"error": str(self)}
        if self.tx_hash:
            data["txHash"] = self.tx_hash
        if self.defect_id is not None:
            data["defectId"] = self.defect_id
        return data


class ChainRejectionError(ChainTraceError):
    """A submitted transaction or call reverted; message is the chain's own."""
    status_code = 400


class ConsistencyError(ChainTraceError):
    """
    Chain operation confirmed but the off-chain mirror write failed.

    The two stores are divergent until an operator reprocesses the
    recorded ReconciliationDefect.
    """
    status_code = 500

    def __init__(self, message: str, defect_id: int | None = None):
        super().__init__(message)
        self.defect_id = defect_id

    def to_dict(self) -> dict:
        return {"error": str(self), "defectId": self.defect_id}
