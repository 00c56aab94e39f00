"""HTTP calls from one function endpoint to another (worker -> processor, queue -> capability).

Calls carry the service role key and always have a deadline.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class FunctionCallError(Exception):
    """The call never produced an HTTP response (connect error, timeout)."""


@dataclass
class FunctionResponse:
    status_code: int
    data: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def error(self) -> str:
        return str(self.data.get("error") or f"HTTP {self.status_code}")


class FunctionClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.functions_base_url).rstrip("/")
        self.service_key = settings.service_role_key if service_key is None else service_key
        self.timeout = settings.function_call_deadline_s if timeout is None else timeout
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"
        return headers

    async def call(self, name: str, payload: Optional[dict] = None) -> FunctionResponse:
        url = f"{self.base_url}/{name}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload or {}, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise FunctionCallError(f"{name} timed out after {self.timeout}s") from exc
        except httpx.RequestError as exc:
            raise FunctionCallError(f"{name} request failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError:
            data = {"error": resp.text[:500]}
        if not isinstance(data, dict):
            data = {"result": data}
        return FunctionResponse(status_code=resp.status_code, data=data)


async def wake_job_worker(client: Optional[FunctionClient] = None) -> None:
    """Best-effort kick of the job worker; scheduled runs pick up anything this misses."""
    try:
        resp = await (client or FunctionClient()).call("job-worker", {})
        if not resp.ok:
            logger.warning(f"Job worker wake-up returned {resp.status_code}: {resp.error}")
    except Exception as e:
        logger.warning(f"Job worker wake-up failed: {e}")
