"""Error engine HTTP API.

This file handles three concerns:

1. Intake: receives error events from product SDKs and deployment webhooks
   from Vercel.

2. Read API: exposes groups, spike alerts, and deploy correlations the
   dashboard polls.

3. Operator actions: status changes, alert acknowledgement, manual deploy
   logging, and the spike-detection trigger a scheduler calls.

Flow for an error event:
    POST /api/errors
        → check ingest key (when configured)
        → IngestionGate.ingest(): validate, rate-limit, sanitize, store
        → 201 {id, status: "received"} | 400 | 429 | 503

Every EngineError raised by a route is mapped to its status code by one
exception handler, so routes never build error responses themselves.

Run locally:
    uv run uvicorn main:app --reload
"""

import hmac
import json
import logging
import logging.handlers
import pathlib
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from core.config import load_settings
from core.engine import build_engine
from core.errors import EngineError, InvalidInput
from integrations.vercel import parse_deploy_webhook, verify_vercel_signature
from schemas.deployments import Deployment

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FILE = pathlib.Path(__file__).parent / "error_engine.log"
LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler = logging.handlers.RotatingFileHandler(
    LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8",
)
_file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

_root_logger = logging.getLogger()
_root_logger.setLevel(logging.INFO)
_root_logger.addHandler(_file_handler)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Engine setup
# ---------------------------------------------------------------------------

settings = load_settings()
engine = build_engine(settings)

if not settings.errors_ingest_key:
    logger.warning("ERRORS_INGEST_KEY not set, /api/errors accepts unauthenticated events.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await engine.aclose()


# ---------------------------------------------------------------------------
# App + CORS
# ---------------------------------------------------------------------------

app = FastAPI(title="Error Engine", lifespan=lifespan)

# ALLOWED_ORIGINS env var overrides the default for production deployments.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (ValueError, RecursionError):
        raise InvalidInput("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise InvalidInput("Invalid JSON body")
    return body


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------

@app.post("/api/errors")
async def ingest_error(request: Request, authorization: str = Header(default="")):
    """Accept one error event from a product SDK.

    Always answers with the IngestResult's own status code; the gate never
    raises, so the exception handler is not involved here.
    """
    key = engine.settings.errors_ingest_key
    if key:
        token = authorization.removeprefix("Bearer ").strip()
        if not hmac.compare_digest(token, key):
            raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = await request.json()
    except (ValueError, RecursionError):
        payload = None

    result = await engine.ingest(payload)
    return JSONResponse(status_code=result.status_code, content=result.to_response())


# ---------------------------------------------------------------------------
# Error groups + status ledger
# ---------------------------------------------------------------------------

@app.get("/api/error-groups")
async def list_error_groups(product: str | None = None):
    groups = await engine.groups(product)
    return [g.model_dump(mode="json") for g in groups]


@app.post("/api/error-groups/refresh")
async def refresh_error_groups():
    """Recompute the group projection from stored events."""
    count = await engine.refresh_groups()
    return {"ok": True, "groups": count}


@app.get("/api/error-groups/{product}/{fingerprint}")
async def get_error_group(product: str, fingerprint: str):
    group = await engine.get_group(fingerprint, product)
    return group.model_dump(mode="json")


@app.post("/api/error-groups/status")
async def set_error_group_status(request: Request):
    body = await _json_body(request)
    fingerprint, product = body.get("fingerprint"), body.get("product")
    if not isinstance(fingerprint, str) or not isinstance(product, str):
        raise InvalidInput("fingerprint and product are required")
    notes = body.get("notes") if isinstance(body.get("notes"), str) else None
    row = await engine.set_status(fingerprint, product, body.get("status"), notes)
    return row.model_dump(mode="json")


@app.post("/api/error-groups/bulk-status")
async def bulk_set_error_group_status(request: Request):
    body = await _json_body(request)
    updated = await engine.bulk_set_status(body.get("items"), body.get("status"))
    return {"ok": True, "updated": updated}


# ---------------------------------------------------------------------------
# Spike alerts
# ---------------------------------------------------------------------------

@app.post("/api/spikes/detect")
async def detect_spikes(threshold_multiplier: float | None = None,
                        cooldown_hours: float | None = None):
    """Run one spike sweep now. Called by the scheduler every few minutes."""
    alerts = await engine.detect_spikes(threshold_multiplier, cooldown_hours)
    return {"ok": True, "alerts": [a.model_dump(mode="json") for a in alerts]}


@app.get("/api/spikes")
async def list_spikes(product: str | None = None, unacknowledged: bool = False):
    alerts = await engine.list_spikes(product, unacknowledged)
    return [a.model_dump(mode="json") for a in alerts]


@app.post("/api/spikes/{alert_id}/acknowledge")
async def acknowledge_spike(alert_id: str):
    alert = await engine.acknowledge_spike(alert_id)
    return {"ok": True, "alert": alert.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Deployments
# ---------------------------------------------------------------------------

@app.post("/api/deployments", status_code=201)
async def create_deployment(request: Request):
    """Log a deployment manually (for products not deployed through Vercel)."""
    body = await _json_body(request)
    body.pop("id", None)
    try:
        deployment = Deployment(**body)
    except ValidationError as exc:
        raise InvalidInput(f"Malformed deployment: {exc.errors()[0]['msg']}") from None
    stored = await engine.record_deployment(deployment)
    return stored.model_dump(mode="json")


@app.get("/api/deployments")
async def list_deployments(product: str | None = None, days: int = 7):
    """Deploy list view: every deployment in range with its badge."""
    summaries = await engine.summarize_deployments(product, days)
    return [s.model_dump(mode="json") for s in summaries]


@app.get("/api/deployments/{deployment_id}/correlation")
async def get_deploy_correlation(deployment_id: str, window_hours: float = 1,
                                 bucket_minutes: float = 15):
    result = await engine.correlate_deployment(
        deployment_id, window_hours=window_hours, bucket_minutes=bucket_minutes,
    )
    return result.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Vercel webhook handler
# ---------------------------------------------------------------------------

@app.post("/webhooks/vercel")
async def vercel_webhook(request: Request, x_vercel_signature: str = Header(default="")):
    """Record a deployment from a Vercel deployment.succeeded webhook.

    Answers 200 for every outcome. Vercel retries anything else, and a
    retry cannot fix a bad signature or an unmapped project.
    """
    body = await request.body()

    secret = engine.settings.vercel_webhook_secret
    if not secret:
        logger.error("VERCEL_WEBHOOK_SECRET not set, discarding webhook.")
        return {"ok": True}
    if not verify_vercel_signature(body, x_vercel_signature, secret):
        logger.warning("Rejected Vercel webhook: invalid signature.")
        return {"error": "Invalid signature"}

    try:
        raw = json.loads(body)
    except (ValueError, RecursionError):
        logger.warning("Vercel webhook: invalid JSON body.")
        return {"ok": True}
    if not isinstance(raw, dict):
        logger.warning("Vercel webhook: body is not a JSON object.")
        return {"ok": True}

    deployment = parse_deploy_webhook(raw, engine.settings.project_map)
    if deployment is None:
        return {"ok": True, "skipped": True}

    try:
        await engine.record_deployment(deployment)
    except EngineError as exc:
        logger.error("Failed to record Vercel deployment for %s: %s", deployment.product, exc.message)
    return {"ok": True}
