"""Vercel deployment webhook integration.

Responsible for two things:
1. Validating the HMAC signature on incoming Vercel webhooks
2. Turning a deployment.succeeded payload into a Deployment record

Vercel retries any non-2xx response, so the HTTP handler answers 200 for
every outcome (bad signature, unknown project, malformed body) and only logs
the problem.

Vercel webhook reference: https://vercel.com/docs/observability/webhooks-overview
"""

import hashlib
import hmac
import logging
from datetime import datetime
from typing import Any

from schemas.deployments import Deployment
from utils.timeutil import from_epoch_ms, utc_now

logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "deployment.succeeded"

COMMIT_HASH_MAX = 40
COMMIT_MESSAGE_MAX = 500
BRANCH_MAX = 100
AUTHOR_MAX = 100
DEPLOY_URL_MAX = 500

DEFAULT_BRANCH = "main"
DEFAULT_DEPLOYER = "vercel-auto"


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

def verify_vercel_signature(body: bytes, header_signature: str, secret: str) -> bool:
    """Verify the HMAC-SHA1 signature Vercel attaches to every webhook.

    Args:
        body:             Raw request body bytes. HMAC is computed over the
                          exact bytes received, so read them before parsing.
        header_signature: Value of the 'x-vercel-signature' header.
        secret:           Webhook secret from VERCEL_WEBHOOK_SECRET.

    Returns:
        True if the signature is valid, False otherwise.
    """
    expected = hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha1,
    ).hexdigest()
    return hmac.compare_digest(expected, header_signature or "")


# ---------------------------------------------------------------------------
# Payload parser
# ---------------------------------------------------------------------------

def _clip(value: Any, limit: int) -> str | None:
    return value[:limit] if isinstance(value, str) else None


def _deployed_at(deployment: dict, now: datetime) -> datetime:
    # readyAt is when the deploy went live; createdAt when it was queued.
    for key in ("readyAt", "createdAt"):
        value = deployment.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value:
            return from_epoch_ms(int(value))
    return now


def parse_deploy_webhook(
    raw: dict,
    project_map: dict[str, str],
    now: datetime | None = None,
) -> Deployment | None:
    """Extract a Deployment from a Vercel webhook body.

    Payload shape (only the fields used here):

    {
        "type": "deployment.succeeded",
        "payload": {
            "project": {"name": "storefront-web"},
            "deployment": {
                "url": "storefront-abc123.vercel.app",
                "readyAt": 1760000000000,
                "createdAt": 1759999900000,
                "meta": {
                    "githubCommitSha": "...",
                    "githubCommitMessage": "...",
                    "githubCommitRef": "main",
                    "githubCommitAuthorLogin": "octocat"
                }
            }
        }
    }

    Args:
        raw: Parsed JSON body.
        project_map: Vercel project name -> product key.
        now: Fallback deploy time when the payload has no timestamps.

    Returns:
        The Deployment to record, or None if the event should be skipped
        (other event type, missing objects, or unmapped project).
    """
    if raw.get("type") != SUCCEEDED_EVENT:
        logger.info("Ignoring Vercel webhook type '%s'.", raw.get("type"))
        return None

    data = raw.get("payload") or {}
    deployment = data.get("deployment") if isinstance(data, dict) else None
    project = data.get("project") if isinstance(data, dict) else None
    if not isinstance(deployment, dict) or not isinstance(project, dict):
        logger.warning("Vercel webhook missing deployment/project in payload.")
        return None

    project_name = project.get("name") or ""
    product = project_map.get(project_name)
    if product is None:
        logger.warning("Vercel project '%s' not in VERCEL_PROJECT_MAP, skipping.", project_name)
        return None

    meta = deployment.get("meta")
    if not isinstance(meta, dict):
        meta = {}

    return Deployment(
        product=product,
        deployed_at=_deployed_at(deployment, now or utc_now()),
        commit_hash=_clip(meta.get("githubCommitSha"), COMMIT_HASH_MAX),
        commit_message=_clip(meta.get("githubCommitMessage"), COMMIT_MESSAGE_MAX),
        branch=_clip(meta.get("githubCommitRef"), BRANCH_MAX) or DEFAULT_BRANCH,
        deployed_by=_clip(meta.get("githubCommitAuthorLogin"), AUTHOR_MAX) or DEFAULT_DEPLOYER,
        deploy_url=_clip(deployment.get("url"), DEPLOY_URL_MAX),
    )
