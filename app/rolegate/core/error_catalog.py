from dataclasses import dataclass
from fastapi import status


@dataclass(frozen=True)
class ErrorDefinition:
    code: str
    message: str
    status_code: int


class ErrorCatalog:
    INVALID_TOKEN = ErrorDefinition("INVALID_TOKEN", "Invalid token", status.HTTP_401_UNAUTHORIZED)
    PRINCIPAL_INACTIVE = ErrorDefinition(
        "PRINCIPAL_INACTIVE",
        "Principal is inactive",
        status.HTTP_403_FORBIDDEN,
    )
    PERMISSION_DENIED = ErrorDefinition(
        "PERMISSION_DENIED",
        "Permission denied",
        status.HTTP_403_FORBIDDEN,
    )
    NOT_FOUND = ErrorDefinition("NOT_FOUND", "Resource not found", status.HTTP_404_NOT_FOUND)
    DUPLICATE_NAME = ErrorDefinition(
        "DUPLICATE_NAME",
        "A role with this name already exists",
        status.HTTP_409_CONFLICT,
    )
    ALREADY_ASSIGNED = ErrorDefinition(
        "ALREADY_ASSIGNED",
        "Role already assigned",
        status.HTTP_409_CONFLICT,
    )
    NOT_ASSIGNED = ErrorDefinition(
        "NOT_ASSIGNED",
        "Role not assigned",
        status.HTTP_404_NOT_FOUND,
    )
    HIERARCHY_VIOLATION = ErrorDefinition(
        "HIERARCHY_VIOLATION",
        "Operation exceeds the actor's hierarchy level",
        status.HTTP_403_FORBIDDEN,
    )
    ROLE_IN_USE = ErrorDefinition(
        "ROLE_IN_USE",
        "Role is assigned to active principals",
        status.HTTP_409_CONFLICT,
    )
    INVALID_GRANT = ErrorDefinition(
        "INVALID_GRANT",
        "Grant references an unknown or inactive permission",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    MALFORMED_PERMISSION_KEY = ErrorDefinition(
        "MALFORMED_PERMISSION_KEY",
        "Permission key must be resource:action or ACTION_RESOURCE",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    SYSTEM_ROLE_IMMUTABLE = ErrorDefinition(
        "SYSTEM_ROLE_IMMUTABLE",
        "System roles cannot be modified",
        status.HTTP_409_CONFLICT,
    )
    DB_UNAVAILABLE = ErrorDefinition(
        "DB_UNAVAILABLE",
        "Database unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
    LOCK_TIMEOUT = ErrorDefinition(
        "LOCK_TIMEOUT",
        "Lock wait timeout",
        status.HTTP_409_CONFLICT,
    )
    VALIDATION_ERROR = ErrorDefinition(
        "VALIDATION_ERROR",
        "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
    )
    INTERNAL_ERROR = ErrorDefinition(
        "INTERNAL_ERROR",
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class AppError(Exception):
    def __init__(self, error: ErrorDefinition, details: object | None = None):
        self.error = error
        self.details = details
        super().__init__(error.message)

    @property
    def code(self) -> str:
        return self.error.code
