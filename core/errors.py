"""Engine error taxonomy.

Every failure the engine reports to a caller is one of four kinds. Each kind
carries the HTTP status the API layer answers with, so the mapping lives in
one place instead of being repeated in every route.

    InvalidInput      400  malformed or missing required field; caller must fix
    NotFound          404  unknown fingerprint, alert, or deployment id
    RateLimited       429  transient; retry later for the same product
    StoreUnavailable  503  infrastructure fault after the bounded retry
"""


class EngineError(Exception):
    """Base class for every error the engine surfaces to callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(EngineError):
    """A request failed shape or value validation."""

    status_code = 400


class NotFound(EngineError):
    """The referenced record does not exist."""

    status_code = 404


class RateLimited(EngineError):
    """The per-product ingestion cap was exceeded for the current window.

    Attributes:
        product: The product key whose window is full.
    """

    status_code = 429

    def __init__(self, product: str):
        super().__init__(f"Rate limit exceeded for product '{product}'.")
        self.product = product


class StoreUnavailable(EngineError):
    """The event store could not be reached after one retry."""

    status_code = 503
