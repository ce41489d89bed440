class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class ValidationError(AppError):
    """Raised when required input is missing or malformed, before any allocation runs."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class ConflictError(AppError):
    """Raised when a candidate session collides with committed sessions.

    ``conflicts`` holds the colliding records (already serialized for display)
    and is mirrored into ``details`` so the HTTP layer can return it verbatim.
    """
    def __init__(self, message: str, conflicts: list[dict] | None = None):
        self.conflicts = list(conflicts or [])
        super().__init__(message, status_code=409, details={"conflicts": self.conflicts})

class NotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class StateError(AppError):
    """Raised when an operation is invalid for the current lifecycle state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class PermissionDeniedError(AppError):
    """Raised when the acting user may not perform the operation on this record."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=403, details=details)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
