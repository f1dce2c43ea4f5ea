"""HTTP implementation of the remote task gateway."""

from typing import Any

import httpx
from pydantic import ValidationError

from delivery_engine.config import get_settings
from delivery_engine.errors import (
    AlreadyAssigned,
    GatewayUnavailable,
    InvalidTransition,
    TaskNotFound,
)
from delivery_engine.models.earnings import EarningsPeriod, EarningsSummary
from delivery_engine.models.task import Task, TaskStatus
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)


class HttpTaskGateway:
    """Talks to the marketplace backend's ``/delivery`` endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        actor_id: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        headers = {"Accept": "application/json"}
        if actor_id:
            headers["X-Actor-Id"] = actor_id

        self.client = client or httpx.AsyncClient(
            base_url=base_url or settings.gateway_base_url,
            timeout=timeout or settings.gateway_timeout_seconds,
            headers=headers,
        )
        self._owns_client = client is None

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this gateway created it."""
        if self._owns_client:
            await self.client.aclose()

    async def list_available(self) -> list[Task]:
        """Fetch tasks open for acceptance."""
        response = await self._request("GET", "/delivery/tasks/available")
        return self._parse_tasks(self._json(response), "tasks")

    async def accept(self, task_id: str) -> Task:
        """Claim a task; the backend rejects a second claimant with 409."""
        response = await self._request(
            "PUT", f"/delivery/tasks/{task_id}/accept", task_id=task_id
        )
        payload = self._unwrap(self._json(response), "task")
        try:
            return Task.model_validate(payload)
        except ValidationError as e:
            raise GatewayUnavailable(f"Malformed task in accept response: {e}", task_id) from e

    async def update_status(self, task_id: str, status: TaskStatus) -> None:
        """Report a status change."""
        await self._request(
            "PUT",
            f"/delivery/tasks/{task_id}/status",
            task_id=task_id,
            json={"status": status.value},
        )

    async def list_completed(self) -> list[Task]:
        """Fetch the partner's delivered tasks."""
        response = await self._request("GET", "/delivery/tasks/completed")
        return self._parse_tasks(self._json(response), "tasks")

    async def get_earnings(self, period: EarningsPeriod) -> EarningsSummary:
        """Fetch aggregated earnings for a period."""
        response = await self._request(
            "GET", "/delivery/earnings", params={"period": period.value}
        )
        payload = self._unwrap(self._json(response), "earnings")
        if not isinstance(payload, dict):
            raise GatewayUnavailable("Malformed earnings response")
        try:
            return EarningsSummary.model_validate({"period": period, **payload})
        except ValidationError as e:
            raise GatewayUnavailable(f"Malformed earnings response: {e}") from e

    async def set_availability(self, online: bool) -> None:
        """Tell the backend whether the partner is taking tasks."""
        await self._request("PUT", "/delivery/status", json={"online": online})

    async def _request(
        self,
        method: str,
        path: str,
        task_id: str | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise GatewayUnavailable(f"{method} {path} timed out", task_id) from e
        except httpx.TransportError as e:
            raise GatewayUnavailable(f"{method} {path} failed: {e}", task_id) from e

        if response.is_success:
            return response

        detail = self._error_detail(response)
        logger.info(
            "gateway_rejected",
            method=method,
            path=path,
            status_code=response.status_code,
            detail=detail,
        )

        if response.status_code == httpx.codes.CONFLICT:
            raise AlreadyAssigned(detail or "Task already assigned", task_id)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise TaskNotFound(detail or "Task not found", task_id)
        if response.status_code in (httpx.codes.BAD_REQUEST, httpx.codes.UNPROCESSABLE_ENTITY):
            raise InvalidTransition(detail or "Transition rejected", task_id)
        raise GatewayUnavailable(
            f"{method} {path} returned {response.status_code}", task_id
        )

    @staticmethod
    def _error_detail(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return response.text or None
        if isinstance(body, dict):
            return body.get("message") or body.get("detail")
        return None

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailable("Response body is not JSON") from e

    @staticmethod
    def _unwrap(payload: Any, key: str) -> Any:
        # The backend wraps some payloads: {"tasks": [...]}, {"task": {...}}.
        if isinstance(payload, dict) and key in payload:
            return payload[key]
        if isinstance(payload, dict) and "data" in payload:
            return payload["data"]
        return payload

    def _parse_tasks(self, payload: Any, key: str) -> list[Task]:
        items = self._unwrap(payload, key)
        if not isinstance(items, list):
            raise GatewayUnavailable("Expected a list of tasks")

        tasks: list[Task] = []
        for item in items:
            try:
                tasks.append(Task.model_validate(item))
            except ValidationError as e:
                logger.warning("gateway_task_skipped", error=str(e))
        return tasks
