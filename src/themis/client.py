from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
import logging
from typing import Any, AsyncIterator, Optional

import aiohttp
import pydantic

from themis.exceptions import ErrorDetail, TransientFetchError, TriggerError
from themis.model import CheckType
from themis.storage.types import CheckRunRow, CompletedCheckRow, format_utc_datetime

logger = logging.getLogger("themis")

API_PREFIX = "/api/v1"

_COMPLETED = pydantic.TypeAdapter(list[CompletedCheckRow])


class ThemisClient:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[ThemisClient]:
        if self.session is not None:
            yield self
            return
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            self.session = session
            try:
                yield self
            finally:
                self.session = None

    def results_url(self, check_run_id: str) -> str:
        return f"{self.base_url}/check/results/{check_run_id}"

    async def trigger_check(
        self,
        owner: str,
        repo: str,
        branch_name: str,
        check_type: CheckType,
    ) -> str:
        body = {
            "owner": owner,
            "repo": repo,
            "branchName": branch_name,
            "checkType": CheckType(check_type).value,
        }
        try:
            status, data = await self._request("POST", "/checks", json=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TriggerError(f"Failed to trigger check: {e}") from e
        if status >= 400:
            error = ErrorDetail.from_payload(data, status)
            raise TriggerError(f"Failed to trigger check: {status} {error.detail}")
        if not isinstance(data, dict) or not data.get("checkRunId"):
            raise TriggerError("Failed to trigger check: response has no checkRunId")
        return data["checkRunId"]

    async def get_check(self, check_run_id: str) -> CheckRunRow:
        data = await self._fetch(f"/checks/{check_run_id}")
        try:
            return CheckRunRow.model_validate(data)
        except pydantic.ValidationError as e:
            raise TransientFetchError(f"Unexpected check run payload: {e}") from e

    async def list_completed_since(self, since: datetime) -> list[CompletedCheckRow]:
        data = await self._fetch(
            "/checks/completed", params={"since": format_utc_datetime(since)}
        )
        try:
            return _COMPLETED.validate_python(data)
        except pydantic.ValidationError as e:
            raise TransientFetchError(f"Unexpected completed checks payload: {e}") from e

    async def _fetch(self, path: str, **kwargs: Any) -> Any:
        try:
            status, data = await self._request("GET", path, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientFetchError(f"Request to {path} failed: {e}") from e
        if status >= 400:
            error = ErrorDetail.from_payload(data, status)
            raise TransientFetchError(f"{path}: {status} {error.kind.value}: {error.detail}")
        return data

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, Any]:
        if self.session is None:
            raise RuntimeError("ThemisClient used outside of connect()")
        headers = {}
        if self.api_key is not None:
            headers["x-api-key"] = self.api_key
        url = f"{self.base_url}{API_PREFIX}{path}"
        logger.debug("%s %s", method, url)
        async with self.session.request(
            method, url, headers=headers, timeout=self.timeout, **kwargs
        ) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = await resp.text()
            return resp.status, data
