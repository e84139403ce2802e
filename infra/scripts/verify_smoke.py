from __future__ import annotations

import asyncio
import os
import sys
import time
from datetime import timedelta
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit
from uuid import uuid4

import httpx

ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(ROOT))

from foodshare.client.api_client import ClaimConflictError, FoodShareClient  # noqa: E402
from foodshare.client.realtime import ChangeFeed  # noqa: E402
from foodshare.client.store import TaskBoardStore  # noqa: E402
from foodshare.domain.models import FoodReportCreate, FoodType, UserRole, now_utc  # noqa: E402


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _to_ws_url(http_base_url: str) -> str:
    parsed = urlsplit(http_base_url)
    if parsed.scheme not in {"http", "https"}:
        raise RuntimeError(f"unsupported APP_BASE_URL scheme: {parsed.scheme}")
    ws_scheme = "wss" if parsed.scheme == "https" else "ws"
    return urlunsplit((ws_scheme, parsed.netloc, "/ws/changes", "", ""))


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
        except httpx.HTTPError as exc:
            last_status = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}")


async def _signup(
    client: httpx.AsyncClient,
    email: str,
    role: UserRole,
    profile_path: str,
    profile: dict[str, object],
) -> str:
    response = await client.post(
        "/api/identity/register",
        json={"email": email, "name": email.split("@")[0], "password": "smoke-pass", "role": role.value},
    )
    _assert_status(response, 201)
    login = await client.post("/api/identity/dev-login", json={"email": email, "password": "smoke-pass"})
    _assert_status(login, 200)
    token = login.json()["access_token"]
    created = await client.post(profile_path, json=profile, headers=_auth_headers(token))
    _assert_status(created, 201)
    return token


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    run_id = uuid4().hex[:8]

    async with httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(20.0)) as raw:
        await _wait_ok(raw, "/healthz")
        await _wait_ok(raw, "/readyz")
        hotel_token = await _signup(
            raw,
            f"hotel-{run_id}@smoke.test",
            UserRole.HOTEL,
            "/api/profiles/hotels",
            {"name": f"Smoke Hotel {run_id}", "street": "1 Main Rd", "city": "Chennai", "contact": "000"},
        )
        agent_tokens = [
            await _signup(
                raw,
                f"agent-{index}-{run_id}@smoke.test",
                UserRole.AGENT,
                "/api/profiles/agents",
                {"name": f"Agent {index}", "contact": "000", "zone": "smoke", "area": "smoke"},
            )
            for index in range(2)
        ]

    async with (
        FoodShareClient(base_url, token=hotel_token) as hotel,
        FoodShareClient(base_url, token=agent_tokens[0]) as first,
        FoodShareClient(base_url, token=agent_tokens[1]) as second,
    ):
        store = TaskBoardStore(second, UserRole.AGENT, agent_id=await second.agent_id())
        await store.load()

        async with ChangeFeed(agent_tokens[1], url=_to_ws_url(base_url)) as feed:
            subscribed = await anext(feed)
            if subscribed.get("type") != "subscribed":
                raise RuntimeError(f"unexpected first feed message: {subscribed}")

            pickup = now_utc()
            report = await hotel.create_report(
                FoodReportCreate(
                    food_name=f"Smoke Meals {run_id}",
                    food_type=FoodType.VEGETARIAN,
                    quantity=5,
                    pickup_time=pickup,
                    expiry_time=pickup + timedelta(hours=1),
                )
            )
            inserted = await asyncio.wait_for(anext(feed), timeout=10)
            store.handle_message(inserted)
            if report.id not in store.available:
                raise RuntimeError("new report did not reach the second agent's available list")

            await first.claim(report.id)
            removed = await asyncio.wait_for(anext(feed), timeout=10)
            store.handle_message(removed)
            if report.id in store.available:
                raise RuntimeError("claimed report still listed as available")

            try:
                await second.claim(report.id)
            except ClaimConflictError:
                pass
            else:
                raise RuntimeError("second claim on the same report did not conflict")

        await first.mark_picked(report.id)
        delivered = await first.mark_delivered(report.id)
        if delivered.status != "delivered":
            raise RuntimeError(f"unexpected final status: {delivered.status}")

    print(f"smoke ok: report {report.id} delivered")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
