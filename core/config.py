"""Engine settings.

Settings are read from environment variables once at startup. A local .env
file is loaded first with python-dotenv so developers can keep secrets out of
their shell profile. Values are validated by pydantic; a bad value fails
startup with a ValidationError naming the field.

See .env.example for every supported variable.
"""

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Maps each Settings field to the environment variable that sets it.
ENV_VARS = {
    "spike_threshold_multiplier": "SPIKE_THRESHOLD_MULTIPLIER",
    "spike_cooldown_hours": "SPIKE_COOLDOWN_HOURS",
    "spike_absolute_floor": "SPIKE_ABSOLUTE_FLOOR",
    "rate_limit_per_window": "RATE_LIMIT_PER_WINDOW",
    "rate_limit_window_seconds": "RATE_LIMIT_WINDOW_SECONDS",
    "store_timeout_seconds": "STORE_TIMEOUT_SECONDS",
    "store_retry_backoff_seconds": "STORE_RETRY_BACKOFF_SECONDS",
    "fingerprint_policy": "FINGERPRINT_POLICY",
    "errors_ingest_key": "ERRORS_INGEST_KEY",
    "vercel_webhook_secret": "VERCEL_WEBHOOK_SECRET",
    "vercel_project_map": "VERCEL_PROJECT_MAP",
    "products": "PRODUCTS",
    "store_backend": "STORE_BACKEND",
    "store_rest_url": "STORE_REST_URL",
    "store_rest_key": "STORE_REST_KEY",
    "allowed_origins": "ALLOWED_ORIGINS",
}


class Settings(BaseModel):
    """Validated engine configuration.

    Attributes:
        spike_threshold_multiplier: current / baseline ratio that counts as a
            spike. Defaults to 3.
        spike_cooldown_hours: Minimum hours between two alerts for the same
            product. Defaults to 2.
        spike_absolute_floor: With a zero baseline, the trailing-hour count
            must exceed this to alert. Defaults to 5.
        rate_limit_per_window: Max accepted events per product per window.
        rate_limit_window_seconds: Length of one rate-limit window.
        store_timeout_seconds: Per-call timeout applied to every store call.
        store_retry_backoff_seconds: Fixed sleep before the single retry.
        fingerprint_policy: "trust" keeps the client-supplied fingerprint,
            "recompute" replaces it with the server-computed one.
        errors_ingest_key: When set, POST /api/errors requires
            "Authorization: Bearer <key>".
        vercel_webhook_secret: Secret for the x-vercel-signature header.
            Deploy webhooks are discarded while it is unset.
        vercel_project_map: "vercel-project:product,..." mapping.
        products: "product:Display Name,..." roster of known products.
            Empty means products are discovered from stored events.
        store_backend: "memory" or "rest".
        store_rest_url: Base URL of the REST backend (required for "rest").
        store_rest_key: API key sent to the REST backend.
        allowed_origins: Comma-separated CORS origins.
    """

    spike_threshold_multiplier: float = Field(default=3.0, gt=0)
    spike_cooldown_hours: float = Field(default=2.0, ge=0)
    spike_absolute_floor: int = Field(default=5, ge=0)
    rate_limit_per_window: int = Field(default=100, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)
    store_timeout_seconds: float = Field(default=10.0, gt=0)
    store_retry_backoff_seconds: float = Field(default=0.5, ge=0)
    fingerprint_policy: Literal["trust", "recompute"] = "trust"
    errors_ingest_key: str | None = None
    vercel_webhook_secret: str | None = None
    vercel_project_map: str = ""
    products: str = ""
    store_backend: Literal["memory", "rest"] = "memory"
    store_rest_url: str | None = None
    store_rest_key: str | None = None
    allowed_origins: str = "http://localhost:3000"

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def project_map(self) -> dict[str, str]:
        return parse_pair_map(self.vercel_project_map)

    @property
    def product_names(self) -> dict[str, str]:
        return parse_pair_map(self.products)


def parse_pair_map(raw: str) -> dict[str, str]:
    """Parse "a:b,c:d" into {"a": "b", "c": "d"}.

    Entries without a colon or with an empty side are skipped. Whitespace
    around keys and values is stripped.
    """
    result: dict[str, str] = {}
    for entry in raw.split(","):
        key, sep, value = entry.partition(":")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            result[key] = value
    return result


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build Settings from the process environment.

    Args:
        environ: Mapping to read instead of os.environ. When omitted, .env is
            loaded into os.environ first. Tests pass an explicit dict.

    Returns:
        Validated Settings. Variables that are unset or empty keep defaults.

    Raises:
        pydantic.ValidationError: If any variable has an invalid value.
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    values = {
        field: environ[var]
        for field, var in ENV_VARS.items()
        if environ.get(var, "").strip()
    }
    return Settings(**values)
