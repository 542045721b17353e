"""Ingestion gate. Validates, rate-limits, and normalizes one raw event.

Every raw payload passes through three stages in a fixed order:

    1. Validate   required fields present and well-formed   else InvalidInput
    2. Rate limit per-product fixed window                   else RateLimited
    3. Sanitize   truncate and default optional fields       never rejects

The accepted event is then appended to the store. ingest() never raises:
every outcome, including store failure, is reported as an IngestResult so
the HTTP layer and any batch caller handle one shape.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from core.errors import EngineError, InvalidInput, RateLimited, StoreUnavailable
from grouping.fingerprint import fingerprint as compute_fingerprint
from ingestion import sanitize
from ingestion.rate_limiter import FixedWindowRateLimiter
from schemas.events import ErrorEvent, ErrorSource, ErrorType
from store.base import EventStore
from utils.timeutil import utc_now

logger = logging.getLogger(__name__)

FINGERPRINT_POLICIES = ("trust", "recompute")

_ERROR_TYPES = [t.value for t in ErrorType]
_SOURCES = [s.value for s in ErrorSource]


@dataclass
class IngestResult:
    """Outcome of one ingest() call.

    Attributes:
        accepted: True if the event was stored.
        event_id: Id of the stored event. None when rejected.
        error: The reason for rejection. None when accepted.
    """

    accepted: bool
    event_id: str | None = None
    error: EngineError | None = None

    @property
    def status_code(self) -> int:
        if self.accepted:
            return 201
        return self.error.status_code if self.error else 500

    def to_response(self) -> dict:
        if self.accepted:
            return {"id": self.event_id, "status": "received"}
        return {"error": self.error.message if self.error else "Failed to record error"}


def _required_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{key} is required")
    return value


def _required_choice(payload: dict, key: str, choices: list[str]) -> str:
    value = payload.get(key)
    if value not in choices:
        raise InvalidInput(f"{key} must be one of: {', '.join(choices)}")
    return value


class IngestionGate:
    """The only write path for error events.

    Attributes:
        store: Where accepted events are appended.
        rate_limiter: Per-product cap shared by every ingest() call.
        fingerprint_policy: "trust" stores the client's fingerprint as sent
            (trimmed, at most 64 chars). "recompute" stores the server's own
            fingerprint of message and stack, and logs when the client's
            value disagreed.
    """

    def __init__(
        self,
        store: EventStore,
        rate_limiter: FixedWindowRateLimiter | None = None,
        fingerprint_policy: str = "trust",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if fingerprint_policy not in FINGERPRINT_POLICIES:
            raise ValueError(
                f"fingerprint_policy must be one of {FINGERPRINT_POLICIES}, got '{fingerprint_policy}'."
            )
        self.store = store
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter()
        self.fingerprint_policy = fingerprint_policy
        self._clock = clock

    async def ingest(self, payload: Any) -> IngestResult:
        """Validate, rate-limit, sanitize, and store one raw event.

        Args:
            payload: Decoded JSON body. Anything other than a dict is
                rejected as InvalidInput.

        Returns:
            IngestResult. Accepted results carry the new event id; rejected
            results carry an InvalidInput, RateLimited, or StoreUnavailable.
        """
        try:
            event = self._validate_and_build(payload)
        except InvalidInput as exc:
            logger.warning("Rejected event: %s", exc.message)
            return IngestResult(accepted=False, error=exc)

        if not self.rate_limiter.allow(event.product):
            logger.warning("Rate limit exceeded for product '%s', event dropped.", event.product)
            return IngestResult(accepted=False, error=RateLimited(event.product))

        try:
            stored = await self.store.append_event(event)
        except StoreUnavailable as exc:
            return IngestResult(accepted=False, error=exc)
        except Exception:
            logger.exception("Unexpected failure storing event for product '%s'.", event.product)
            return IngestResult(
                accepted=False, error=StoreUnavailable("Failed to record error"),
            )

        logger.debug("Accepted event %s for %s (%s).", stored.id, stored.product, stored.fingerprint)
        return IngestResult(accepted=True, event_id=stored.id)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _validate_and_build(self, payload: Any) -> ErrorEvent:
        """Run validation then sanitization. Raises InvalidInput only."""
        if not isinstance(payload, dict):
            raise InvalidInput("Invalid JSON body")

        product = _required_str(payload, "product")
        message = _required_str(payload, "error_message")
        error_type = _required_choice(payload, "error_type", _ERROR_TYPES)
        source = _required_choice(payload, "source", _SOURCES)
        client_fp = _required_str(payload, "fingerprint")

        message = message.strip()[:sanitize.MESSAGE_MAX]
        stack = sanitize.clip(payload.get("stack_trace"), sanitize.STACK_MAX)

        return ErrorEvent(
            product=product.strip(),
            message=message,
            error_type=error_type,
            source=source,
            fingerprint=self._resolve_fingerprint(client_fp, message, stack),
            occurred_at=self._clock(),
            stack_trace=stack,
            request_url=sanitize.clip(payload.get("request_url"), sanitize.URL_MAX),
            request_method=sanitize.clip(payload.get("request_method"), sanitize.METHOD_MAX),
            response_status=sanitize.status_code(payload.get("response_status")),
            user_id=sanitize.valid_uuid(payload.get("user_id")),
            environment=sanitize.environment(payload.get("environment")),
            current_route=sanitize.clip(payload.get("current_route"), sanitize.ROUTE_MAX),
            app_version=sanitize.clip(payload.get("app_version"), sanitize.APP_VERSION_MAX),
            user_agent=sanitize.clip(payload.get("user_agent"), sanitize.USER_AGENT_MAX),
            metadata=sanitize.bounded_metadata(payload.get("metadata")),
        )

    def _resolve_fingerprint(self, client_fp: str, message: str, stack: str | None) -> str:
        client_fp = client_fp.strip()[:sanitize.FINGERPRINT_MAX]
        if self.fingerprint_policy == "trust":
            return client_fp

        server_fp = compute_fingerprint(message, stack)
        if server_fp != client_fp:
            logger.warning(
                "Client fingerprint %s differs from server fingerprint %s, storing server value.",
                client_fp, server_fp,
            )
        return server_fp
