"""Send a burst of demo errors to a local server and show the resulting groups."""

import json
import os
import sys
import urllib.error
import urllib.request


BASE_URL = os.environ.get("ERROR_ENGINE_URL", "http://127.0.0.1:8000")
INGEST_KEY = os.environ.get("ERRORS_INGEST_KEY", "")
BURST_SIZE = 12


def _request(method: str, path: str, payload: dict | None = None) -> tuple[int, dict | list]:
    url = f"{BASE_URL}{path}"
    data = None
    headers = {"Content-Type": "application/json"}
    if INGEST_KEY:
        headers["Authorization"] = f"Bearer {INGEST_KEY}"

    if payload is not None:
        data = json.dumps(payload).encode("utf-8")

    req = urllib.request.Request(url=url, method=method, data=data, headers=headers)
    try:
        with urllib.request.urlopen(req, timeout=10) as resp:
            body = resp.read().decode("utf-8")
            return resp.status, json.loads(body) if body else {}
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8")
        return exc.code, json.loads(body) if body else {}


def _payload(i: int) -> dict:
    return {
        "product": "storefront",
        "error_message": "TypeError: Cannot read properties of undefined (reading 'price')",
        "stack_trace": (
            "TypeError: Cannot read properties of undefined (reading 'price')\n"
            f"    at CartTotal (webpack-internal:///./components/CartTotal.tsx:41:{i + 1})"
        ),
        "error_type": "client_crash",
        "source": "client",
        # Column differs per event; the server still groups them together.
        "fingerprint": "demo-cart-total",
        "current_route": "/cart",
        "environment": "development",
        "metadata": {"attempt": i},
    }


def main() -> int:
    try:
        print(f"Posting {BURST_SIZE} demo errors to /api/errors ...")
        for i in range(BURST_SIZE):
            status, body = _request("POST", "/api/errors", _payload(i))
            print(f"  {status} {body}")
    except urllib.error.URLError as exc:
        print(f"Failed to reach API at {BASE_URL}: {exc}", file=sys.stderr)
        print("Start it first with: uv run uvicorn main:app --reload", file=sys.stderr)
        return 1

    _request("POST", "/api/error-groups/refresh")
    status, groups = _request("GET", "/api/error-groups?product=storefront")
    if status != 200:
        print(f"Unexpected groups response: {status} {groups}", file=sys.stderr)
        return 2

    print("\nGroups for storefront:")
    print(json.dumps(groups, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
