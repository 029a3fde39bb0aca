"""
tokentrust error types.

One exception per failure mode so callers (an HTTP layer, the CLI) can map
each case to its own response. A deferred transfer is not an error; see
``TransferStatus.PENDING_TRUST``.
"""


class TokenTrustError(Exception):
    """Base error for all tokentrust operations."""
    status_code = 500


class ValidationError(TokenTrustError):
    """Malformed input: unknown trust type, empty token set, self-trust."""
    status_code = 400


class NotFoundError(TokenTrustError):
    """Unknown wallet, trust relationship or token."""
    status_code = 404


class ForbiddenError(TokenTrustError):
    """Acting wallet is not allowed to perform the operation."""
    status_code = 403


class ConflictError(TokenTrustError):
    """Operation is invalid for the current state of the record."""
    status_code = 409


class InvalidTransitionError(ConflictError):
    """Trust relationship cannot move from its current state."""
    def __init__(self, relationship_id: int, state: str, action: str):
        self.relationship_id = relationship_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} trust relationship {relationship_id} in state '{state}'")


class CustodyConflictError(ConflictError):
    """Token ownership changed between the ownership check and the commit."""
    def __init__(self, token_id: str, expected_owner: str, actual_owner: str):
        self.token_id = token_id
        self.expected_owner = expected_owner
        self.actual_owner = actual_owner
        super().__init__(f"Token {token_id} is no longer owned by {expected_owner}")
