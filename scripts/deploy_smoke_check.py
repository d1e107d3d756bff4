"""Post-deploy smoke checks executed from the app container."""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from uuid import uuid4

BASE_URL = os.environ.get("SMOKE_BASE_URL", "http://localhost:8000")
API_PREFIX = "/api/v1"


def request(
    path: str,
    *,
    method: str = "GET",
    body: dict[str, str] | None = None,
    headers: dict[str, str] | None = None,
    expected: int = 200,
) -> bytes:
    payload = None
    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    if body is not None:
        payload = json.dumps(body).encode("utf-8")
        req_headers["Content-Type"] = "application/json"

    request_obj = urllib.request.Request(
        f"{BASE_URL}{path}",
        data=payload,
        method=method,
        headers=req_headers,
    )
    try:
        with urllib.request.urlopen(request_obj, timeout=30) as response:
            content = response.read()
            status = response.getcode()
    except urllib.error.HTTPError as exc:  # pragma: no cover - runtime smoke script
        body_text = exc.read().decode("utf-8", errors="ignore")
        raise RuntimeError(f"{method} {path} -> {exc.code}: {body_text}") from exc

    if status != expected:
        raise RuntimeError(f"{method} {path} -> {status}, expected {expected}")
    return content


def main() -> None:
    for endpoint in ["/health", "/ready", "/docs", "/metrics"]:
        request(endpoint, expected=200)

    suffix = uuid4().hex[:10]
    email = f"deploy-smoke-{suffix}@tutorbook.dev"
    password = "StrongPass123!"

    request(
        f"{API_PREFIX}/identity/auth/register",
        method="POST",
        body={
            "email": email,
            "password": password,
            "first_name": "Smoke",
            "last_name": "Check",
            "timezone": "UTC",
            "role": "student",
        },
        expected=201,
    )
    login_payload = json.loads(
        request(
            f"{API_PREFIX}/identity/auth/login",
            method="POST",
            body={"email": email, "password": password},
            expected=200,
        ).decode("utf-8")
    )
    auth_headers = {"Authorization": f"Bearer {login_payload['access_token']}"}
    for endpoint in [
        "/identity/users/me",
        "/scheduling/slots/available",
        "/bookings/my",
        "/notifications/my",
    ]:
        request(f"{API_PREFIX}{endpoint}", headers=auth_headers, expected=200)

    print("Smoke checks passed.")


if __name__ == "__main__":
    main()
