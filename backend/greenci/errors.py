"""
Error taxonomy.

    ValidationError         malformed or out-of-range calculator input (422)
    UpstreamFetchError      the CI platform call failed (502), never retried here
    ComputationError        a non-finite intermediate value, treated as a bug (500)
    NotFoundError           unknown project / metric / optimization / agent (404)
    ConflictError           duplicate project (409)
    InvalidTransitionError  optimization or agent state machine violation (409)

main.py registers one exception handler for GreenCIError that maps
`status_code` onto the HTTP response.
"""


class GreenCIError(Exception):
    status_code: int = 500

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(GreenCIError):
    status_code = 422


class UpstreamFetchError(GreenCIError):
    status_code = 502

    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        super().__init__(message, url=url, status=status)
        self.url = url
        self.status = status


class ComputationError(GreenCIError):
    status_code = 500


class NotFoundError(GreenCIError):
    status_code = 404


class ConflictError(GreenCIError):
    status_code = 409


class InvalidTransitionError(GreenCIError):
    status_code = 409

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Cannot transition {entity} from '{current}' to '{requested}'",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested
