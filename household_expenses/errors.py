"""
Domain Errors

Every failure a member can hit is one of these. Each carries a message
that is safe to show to the acting user as-is.
"""


class HouseholdExpensesError(Exception):
    """Base exception for all user-facing failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HouseholdExpensesError):
    """Malformed input (empty name, non-numeric amount)."""
    pass


class NotFoundError(HouseholdExpensesError):
    """Household code, member email or document has no match."""
    pass


class ConflictError(HouseholdExpensesError):
    """Duplicate membership or self-targeting admin action."""
    pass


class AuthorizationError(HouseholdExpensesError):
    """A non-admin invoked an admin-only operation."""
    pass


class ExternalServiceError(HouseholdExpensesError):
    """A store or storage call failed. Not retried automatically."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} error: {message}")
        self.service = service
