"""Custom exceptions for the posture assessment pipeline.

Failures inside a single analyzer never surface here; they are converted to
findings at the analyzer boundary. These types cover what is left: identity,
snapshot and cancellation failures that the aggregator must act on.
"""


class PostureError(Exception):
    """Base exception for all posture pipeline errors."""

    pass


class SnapshotUnavailableError(PostureError):
    """Raised when no resource snapshot can be obtained.

    This includes:
    - Inventory endpoint unreachable
    - Ambient credentials rejected
    - Subscription not visible to the caller
    """

    pass


class DelegatedIdentityError(PostureError):
    """Raised when the delegated (OAuth) identity path cannot be used.

    This includes:
    - No stored token for the client/organization pair
    - Expired or revoked delegated token
    - Inventory does not support delegated access

    The aggregator recovers from this by falling back to ambient identity.
    """

    def __init__(self, message: str, client_id: str = None, organization_id: str = None):
        super().__init__(message)
        self.client_id = client_id
        self.organization_id = organization_id


class PipelineCancelledError(PostureError):
    """Raised when the pipeline observes cancellation before it can combine results."""

    pass


class ConfigurationError(PostureError):
    """Raised when configuration is invalid."""

    pass
