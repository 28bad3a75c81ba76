"""
Error taxonomy shared by services and the HTTP layer.

Services raise these; ``crowdfund.main`` maps each one to its status code and
a ``{"error": ..., "message": ...}`` body.
"""


class CrowdfundError(Exception):
    """Base class for errors that map onto an HTTP response"""

    status_code = 500
    error = "InternalError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(CrowdfundError):
    status_code = 404
    error = "NotFound"


class ValidationError(CrowdfundError):
    status_code = 400
    error = "ValidationError"


class InvalidStateError(CrowdfundError):
    status_code = 409
    error = "InvalidState"


class UpstreamError(CrowdfundError):
    """A payment, storage or identity provider call failed"""

    status_code = 502
    error = "UpstreamError"


class UnauthorizedError(CrowdfundError):
    status_code = 401
    error = "Unauthorized"


class ForbiddenError(CrowdfundError):
    status_code = 403
    error = "Forbidden"


class PayloadTooLargeError(CrowdfundError):
    status_code = 413
    error = "FILE_SIZE_EXCEEDED"
