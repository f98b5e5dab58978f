class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class SchedulerError(AppError):
    """Raised when a generation or cleanup request is malformed or contradictory."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class SessionCommitError(AppError):
    """Raised by the catalog when a class session fails its pre-insert validation."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class SessionConflictError(SessionCommitError):
    """Raised when a session overlaps an existing teacher, room or group booking."""
    def __init__(self, resource: str, message: str, details: dict = None):
        self.resource = resource
        super().__init__(message, details={"resource": resource, **(details or {})})

class CatalogError(AppError):
    """Raised when catalog data needed by a run is missing or inconsistent."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=500, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} with id {resource_id} not found",
            status_code=404,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
