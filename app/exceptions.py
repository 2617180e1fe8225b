"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class SEOHubError(Exception):
    """Base exception for all SEO Hub errors."""

    pass


class DealershipNotFoundError(SEOHubError):
    """Raised when a dealership doesn't exist."""

    def __init__(self, dealership_id: str) -> None:
        self.dealership_id = dealership_id
        super().__init__(f"Dealership not found: {dealership_id}")


class AgencyNotFoundError(SEOHubError):
    """Raised when an agency doesn't exist."""

    def __init__(self, agency_id: str) -> None:
        self.agency_id = agency_id
        super().__init__(f"Agency not found: {agency_id}")


class UserNotFoundError(SEOHubError):
    """Raised when a user can't be located by id or email."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"User not found: {identifier}")


class RequestNotFoundError(SEOHubError):
    """Raised when an SEO request doesn't exist."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class DuplicateClientIdError(SEOHubError):
    """Raised when a dealership is created with a client id already in use."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"A dealership with client ID {client_id} already exists")


class OnboardingStateError(SEOHubError):
    """Raised when onboarding can't proceed from the user's current state."""

    def __init__(self, user_id: str, reason: str) -> None:
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"Cannot complete onboarding for {user_id}: {reason}")


class NoActivePackageError(SEOHubError):
    """Raised when usage is recorded against a dealership without a package."""

    def __init__(self, dealership_id: str) -> None:
        self.dealership_id = dealership_id
        super().__init__(f"Dealership {dealership_id} does not have an active package")


class UsageLimitExceededError(SEOHubError):
    """Raised when a task would exceed the package allowance for the period."""

    def __init__(self, dealership_id: str, task_type: str, used: int, limit: int) -> None:
        self.dealership_id = dealership_id
        self.task_type = task_type
        self.used = used
        self.limit = limit
        super().__init__(
            f"Usage limit for {task_type} exceeded on {dealership_id}: {used}/{limit}"
        )


class VendorAPIError(SEOHubError):
    """Raised when an outbound SEOWorks call fails."""

    def __init__(self, operation: str, message: str, status_code: int | None = None) -> None:
        self.operation = operation
        self.message = message
        self.status_code = status_code
        super().__init__(f"SEOWorks {operation} failed: {message}")


class PropertyMappingError(SEOHubError):
    """Raised when the dealership property mapping file is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Property mapping error: {message}")

