from __future__ import annotations


class PlannerError(Exception):
    """Base class for domain errors raised by stores, repositories and the controller."""

    status_code = 500
    error = "PlannerError"


# PUBLIC_INTERFACE
class NotFoundError(PlannerError):
    """A referenced project, task or snapshot id does not exist."""

    status_code = 404
    error = "NotFound"


# PUBLIC_INTERFACE
class ValidationError(PlannerError):
    """
    A required field is empty or a structural rule would be broken
    (cross-project parent, parent cycle).
    """

    status_code = 400
    error = "ValidationError"


# PUBLIC_INTERFACE
class DuplicateKeyError(PlannerError):
    """An entity with the same id already exists."""

    status_code = 409
    error = "DuplicateKey"


# PUBLIC_INTERFACE
class StorageUnavailableError(PlannerError):
    """The backing storage cannot be reached or is not initialized."""

    status_code = 503
    error = "StorageUnavailable"
