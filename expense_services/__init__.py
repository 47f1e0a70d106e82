"""Host-facing operations over the expense approval kernel."""

from expense_services.claims_api import ApiResponse, ClaimsApi, error_response, serialize_claim
from expense_services.retry import run_with_conflict_retry

__all__ = [
    "ApiResponse",
    "ClaimsApi",
    "error_response",
    "run_with_conflict_retry",
    "serialize_claim",
]
