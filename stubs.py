"""Synthetic demo data for the CLI and local dashboard runs.

Seeds a store with a week of events for three products, relative to a fixed
`now`, so every run produces the same groups, spikes, and badges:

    storefront  light baseline, then a deploy 40 min ago followed by a burst
                of a brand-new error → spike + red badge
    admin       steady low volume, a deploy with no error after it
                → no spike, green badge
    billing-api silent all week, then 8 errors this hour → new-errors spike
"""

from datetime import datetime, timedelta

from grouping.fingerprint import fingerprint
from schemas.deployments import Deployment
from schemas.events import ErrorEvent, ErrorSource, ErrorType
from store.base import EventStore

DEMO_PRODUCTS = {
    "storefront": "Storefront",
    "admin": "Admin Console",
    "billing-api": "Billing API",
}

DEMO_USERS = [
    "6f1c2a8e-3b4d-4e5f-9a0b-1c2d3e4f5a6b",
    "0a9b8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d",
    "d4c3b2a1-0f9e-4d8c-b7a6-5f4e3d2c1b0a",
]

_CART_STACK = """TypeError: Cannot read properties of undefined (reading 'price')
    at CartTotal (webpack-internal:///./components/CartTotal.tsx:41:27)
    at renderWithHooks (/app/node_modules/react-dom/cjs/react-dom.development.js:16305:18)"""

_CHECKOUT_STACK = """Error: Payment intent already confirmed
    at confirmCheckout (/app/.next/server/app/api/checkout/route.js:88:15)
    at async /app/node_modules/next/dist/server/base-server.js:1203:9"""

_ADMIN_STACK = """Traceback (most recent call last):
  File "/srv/admin/views/reports.py", line 212, in export_csv
    rows = build_rows(query)
  File "/usr/lib/python3.12/site-packages/sqlalchemy/orm/query.py", line 2870, in all
TimeoutError: report query exceeded 30s"""

_BILLING_STACK = """Error: upstream returned 502
    at chargeCustomer (/functions/billing/charge.ts:57:11)"""


def _event(product, message, stack, error_type, source, at, user=None) -> ErrorEvent:
    return ErrorEvent(
        product=product,
        message=message,
        stack_trace=stack,
        error_type=error_type,
        source=source,
        fingerprint=fingerprint(message, stack),
        occurred_at=at,
        user_id=user,
    )


def demo_events(now: datetime) -> list[ErrorEvent]:
    """Build the demo event stream in chronological order."""
    events: list[ErrorEvent] = []

    # storefront: one cart error every 4h for the past week
    for i in range(42):
        at = now - timedelta(hours=167) + timedelta(hours=4 * i)
        if at < now - timedelta(hours=1):
            events.append(_event(
                "storefront", "TypeError: Cannot read properties of undefined (reading 'price')",
                _CART_STACK, ErrorType.CLIENT_CRASH, ErrorSource.CLIENT, at,
                DEMO_USERS[i % len(DEMO_USERS)],
            ))

    # admin: one slow report every 6h
    for i in range(28):
        at = now - timedelta(hours=166) + timedelta(hours=6 * i)
        events.append(_event(
            "admin", "TimeoutError: report query exceeded 30s", _ADMIN_STACK,
            ErrorType.UNHANDLED_EXCEPTION, ErrorSource.SERVER, at,
        ))

    # storefront: checkout failures after the deploy at now - 40m
    for i in range(36):
        at = now - timedelta(minutes=39) + timedelta(minutes=i)
        events.append(_event(
            "storefront", "Error: Payment intent already confirmed", _CHECKOUT_STACK,
            ErrorType.API_ERROR, ErrorSource.SERVER, at,
            DEMO_USERS[i % 2] if i % 3 else None,
        ))

    # billing-api: first errors of the week
    for i in range(8):
        at = now - timedelta(minutes=50) + timedelta(minutes=5 * i)
        events.append(_event(
            "billing-api", "Error: upstream returned 502", _BILLING_STACK,
            ErrorType.EDGE_FUNCTION_ERROR, ErrorSource.EDGE_FUNCTION, at,
        ))

    events.sort(key=lambda e: e.occurred_at)
    return events


def demo_deployments(now: datetime) -> list[Deployment]:
    return [
        Deployment(
            product="storefront",
            deployed_at=now - timedelta(minutes=40),
            commit_hash="9f2c4e1a7b3d5f6e8a0c1b2d3e4f5a6b7c8d9e0f",
            commit_message="Retry payment confirmation on network error",
            branch="main",
            deployed_by="octocat",
        ),
        Deployment(
            product="admin",
            deployed_at=now - timedelta(hours=33, minutes=30),
            commit_hash="1a2b3c4d5e6f7a8b9c0d1e2f3a4b5c6d7e8f9a0b",
            commit_message="Paginate report export",
            branch="main",
            deployed_by="vercel-auto",
        ),
    ]


async def seed_demo_store(store: EventStore, now: datetime) -> list[Deployment]:
    """Write the demo events and deployments; return the deployments."""
    for event in demo_events(now):
        await store.append_event(event)
    deployments = demo_deployments(now)
    for deployment in deployments:
        await store.add_deployment(deployment)
    return deployments
