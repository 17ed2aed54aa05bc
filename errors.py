"""Error taxonomy for the Portfolio API.

Every error carries the HTTP status it maps to; ``main`` renders them as
``{"error": message}``.
"""


class PortfolioAPIError(Exception):
    """Base error."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(PortfolioAPIError):
    """Missing or malformed required fields."""
    status_code = 400


class Unauthorized(PortfolioAPIError):
    """No token, or the token did not verify."""
    status_code = 401


class Forbidden(PortfolioAPIError):
    """Authenticated, but not allowed."""
    status_code = 403


class NotFound(PortfolioAPIError):
    status_code = 404


class UpstreamFailure(PortfolioAPIError):
    """Durable store or file store unavailable."""
    status_code = 500
