"""Async HTTP client for the food report API.

HTTP failures are mapped back onto the same error vocabulary the server uses,
so callers can handle a lost claim race without inspecting status codes.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

import httpx

from foodshare.domain.models import (
    AvailableTaskFilter,
    DeliverRequest,
    FoodReportCreate,
    FoodReportRead,
    TokenResponse,
)
from foodshare.domain.state_machine import ASSIGNED_STATUSES, ReportStatus

logger = logging.getLogger(__name__)

FOODSHARE_API_URL = os.getenv("FOODSHARE_API_URL", "http://localhost:8000")
CLAIM_TIMEOUT_SECONDS = float(os.getenv("CLAIM_TIMEOUT_SECONDS", "10"))

CLAIM_CONFLICT_CODE = "claim_conflict"


class FoodShareClientError(Exception):
    pass


class NotFoundError(FoodShareClientError):
    pass


class ClaimConflictError(FoodShareClientError):
    pass


class InvalidTransitionError(FoodShareClientError):
    pass


class ValidationError(FoodShareClientError):
    pass


class PermissionDeniedError(FoodShareClientError):
    pass


class TransportError(FoodShareClientError):
    pass


def _detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return body.get("detail", body)
    return body


def raise_for_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    detail = _detail(response)
    message = detail.get("message", str(detail)) if isinstance(detail, dict) else str(detail)
    code = response.status_code
    if code == 404:
        raise NotFoundError(message)
    if code == 409:
        if isinstance(detail, dict) and detail.get("code") == CLAIM_CONFLICT_CODE:
            raise ClaimConflictError(message)
        raise InvalidTransitionError(message)
    if code == 422:
        raise ValidationError(message)
    if code in (401, 403):
        raise PermissionDeniedError(message)
    raise TransportError(f"{response.request.method} {response.request.url} failed with {code}: {message}")


class FoodShareClient:
    def __init__(
        self,
        base_url: str = FOODSHARE_API_URL,
        token: str | None = None,
        timeout: float = CLAIM_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._token = token
        self._agent_id: str | None = None

    async def __aenter__(self) -> FoodShareClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def token(self) -> str | None:
        return self._token

    def _headers(self) -> dict[str, str]:
        if self._token is None:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        raise_for_response(response)
        if not response.content:
            return None
        return response.json()

    async def login(self, email: str, password: str) -> TokenResponse:
        try:
            body = await self._request(
                "POST", "/api/identity/dev-login", json={"email": email, "password": password}
            )
        except httpx.TimeoutException as exc:
            raise TransportError("login timed out") from exc
        token = TokenResponse.model_validate(body)
        self._token = token.access_token
        self._agent_id = None
        return token

    async def agent_id(self) -> str:
        if self._agent_id is None:
            body = await self._read("/api/profiles/agents/me")
            self._agent_id = str(body["id"])
        return self._agent_id

    async def _read(self, path: str, params: Any = None) -> Any:
        try:
            return await self._request("GET", path, params=params)
        except httpx.TimeoutException as exc:
            raise TransportError(f"GET {path} timed out") from exc

    async def create_report(self, payload: FoodReportCreate) -> FoodReportRead:
        try:
            body = await self._request("POST", "/api/food-reports", json=payload.model_dump(mode="json"))
        except httpx.TimeoutException as exc:
            # Creation is not idempotent, so a timeout cannot be reconciled by id.
            raise TransportError("create timed out; the report may or may not exist") from exc
        return FoodReportRead.model_validate(body)

    async def get_report(self, report_id: str) -> FoodReportRead:
        return FoodReportRead.model_validate(await self._read(f"/api/food-reports/{report_id}"))

    async def list_available(self, task_filter: AvailableTaskFilter | None = None) -> list[FoodReportRead]:
        params: dict[str, Any] = {}
        if task_filter is not None:
            params = task_filter.model_dump(mode="json", exclude_none=True, exclude={"location"})
            if task_filter.location is not None:
                params["lat"] = task_filter.location.latitude
                params["lon"] = task_filter.location.longitude
        body = await self._read("/api/food-reports/available", params=params)
        return [FoodReportRead.model_validate(item) for item in body]

    async def list_mine(self, statuses: list[ReportStatus] | None = None) -> list[FoodReportRead]:
        params = [("status", str(item)) for item in statuses or []]
        body = await self._read("/api/food-reports/mine", params=params)
        return [FoodReportRead.model_validate(item) for item in body]

    async def _transition(
        self,
        report_id: str,
        action: str,
        reached: Callable[[FoodReportRead, str | None], bool],
        json: Any = None,
    ) -> FoodReportRead:
        path = f"/api/food-reports/{report_id}/{action}"
        try:
            body = await self._request("POST", path, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("%s on %s timed out, reconciling", action, report_id)
            return await self._reconcile(report_id, action, reached, exc)
        return FoodReportRead.model_validate(body)

    async def _reconcile(
        self,
        report_id: str,
        action: str,
        reached: Callable[[FoodReportRead, str | None], bool],
        exc: httpx.TimeoutException,
    ) -> FoodReportRead:
        """Re-read the report after a timeout and decide what actually happened."""
        report = await self.get_report(report_id)
        agent_id = await self.agent_id() if action != "cancel" else None
        if reached(report, agent_id):
            logger.info("%s on %s had been applied before the timeout", action, report_id)
            return report
        if action == "claim" and report.status == ReportStatus.ASSIGNED:
            raise ClaimConflictError("food report already claimed by another agent") from exc
        if report.status == _SOURCE_STATUS.get(action):
            raise TransportError(f"{action} timed out and was not applied") from exc
        raise InvalidTransitionError(f"illegal transition: {report.status} -> {action}") from exc

    async def claim(self, report_id: str) -> FoodReportRead:
        return await self._transition(report_id, "claim", _claimed_by)

    async def mark_picked(self, report_id: str) -> FoodReportRead:
        return await self._transition(report_id, "pick", _picked_by)

    async def mark_delivered(self, report_id: str, payload: DeliverRequest | None = None) -> FoodReportRead:
        body = payload.model_dump(mode="json") if payload is not None else None
        return await self._transition(report_id, "deliver", _delivered_by, json=body)

    async def cancel(self, report_id: str) -> FoodReportRead:
        return await self._transition(report_id, "cancel", _cancelled)


_SOURCE_STATUS = {
    "claim": ReportStatus.NEW,
    "pick": ReportStatus.ASSIGNED,
    "deliver": ReportStatus.PICKED,
}


def _claimed_by(report: FoodReportRead, agent_id: str | None) -> bool:
    return report.status in ASSIGNED_STATUSES and report.assigned_agent_id == agent_id


def _picked_by(report: FoodReportRead, agent_id: str | None) -> bool:
    return report.status in (ReportStatus.PICKED, ReportStatus.DELIVERED) and report.assigned_agent_id == agent_id


def _delivered_by(report: FoodReportRead, agent_id: str | None) -> bool:
    return report.status == ReportStatus.DELIVERED and report.assigned_agent_id == agent_id


def _cancelled(report: FoodReportRead, agent_id: str | None) -> bool:
    return report.status == ReportStatus.CANCELLED
