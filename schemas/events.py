"""Error event schema.

An ErrorEvent is one occurrence of an error reported by a product. Events are
produced by the ingestion gate after validation and sanitization, appended to
the event store, and never modified afterwards. Every other component (group
aggregation, spike detection, deploy correlation) is a read over these rows.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    """Coarse classification of what kind of failure was reported.

    Extends str so values serialize to plain strings ("api_error") in JSON
    responses, store rows, and log lines.
    """

    UNHANDLED_EXCEPTION = "unhandled_exception"
    API_ERROR = "api_error"
    CLIENT_CRASH = "client_crash"
    EDGE_FUNCTION_ERROR = "edge_function_error"


class ErrorSource(str, Enum):
    """Where in the product the error was raised."""

    CLIENT = "client"
    SERVER = "server"
    EDGE_FUNCTION = "edge_function"


class Environment(str, Enum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


def new_event_id() -> str:
    return str(uuid.uuid4())


class ErrorEvent(BaseModel):
    """A single sanitized error occurrence, as stored.

    Length limits are enforced by the ingestion gate before construction;
    the model only carries the result. Instances are frozen so a stored
    event cannot be changed in place by any reader.

    Attributes:
        id: Server-assigned UUID4 string.
        product: Key of the reporting product (e.g. "storefront").
        message: Error message, trimmed, at most 2000 characters.
        error_type: Failure classification. See ErrorType.
        source: Origin of the error. See ErrorSource.
        fingerprint: Grouping key, at most 64 characters. Usually the
            16-hex output of grouping.fingerprint.fingerprint().
        occurred_at: UTC time the event was received.
        stack_trace: Raw stack trace, at most 10000 characters.
        request_url: URL being served or fetched, at most 2000 characters.
        request_method: HTTP method, at most 20 characters.
        response_status: HTTP status observed, when the error is an API error.
        user_id: UUID-shaped id of the affected user, or None.
        environment: Deployment environment. Defaults to production.
        current_route: Client-side route at the time of the error.
        app_version: Reporting build version, at most 50 characters.
        user_agent: Browser or client user agent, at most 500 characters.
        metadata: Free-form context whose JSON form is at most 5000 chars.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_event_id)
    product: str
    message: str
    error_type: ErrorType
    source: ErrorSource
    fingerprint: str
    occurred_at: datetime
    stack_trace: str | None = None
    request_url: str | None = None
    request_method: str | None = None
    response_status: int | None = None
    user_id: str | None = None
    environment: Environment = Environment.PRODUCTION
    current_route: str | None = None
    app_version: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
