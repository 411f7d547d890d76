from __future__ import annotations

from typing import List, Optional

import aiohttp
import pydantic
from sanic.log import logger

from themis.exceptions import AnalysisError, AnalysisErrorType
from themis.jobs.types import AnalysisRequest
from themis.model import Issue


_ISSUES = pydantic.TypeAdapter(List[Issue])


class HttpAnalyzer:
    """Delegates the analysis to an external backend.

    The backend receives the job description as JSON and answers with
    ``{"issues": [...]}``, or a non-2xx status with ``{"errorType", "error"}``.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 600.0,
    ):
        self.url = url
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def analyze(self, request: AnalysisRequest) -> List[Issue]:
        payload = {
            "checkRunId": request.check_run_id,
            "owner": request.owner,
            "repo": request.repo,
            "branchName": request.branch_name,
            "checkType": request.check_type.value,
        }
        logger.debug("Requesting analysis of %s from %s", request.full_name, self.url)
        try:
            if self.session is not None:
                return await self._post(self.session, payload)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, payload)
        except aiohttp.ClientError as e:
            raise AnalysisError(
                f"Analysis backend unreachable: {e}", AnalysisErrorType.AI_SERVICE_ERROR
            ) from e

    async def _post(self, session: aiohttp.ClientSession, payload: dict) -> List[Issue]:
        async with session.post(self.url, json=payload, timeout=self.timeout) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            if resp.status >= 400:
                raise _analysis_error(resp.status, data)

        if not isinstance(data, dict) or "issues" not in data:
            raise AnalysisError(
                "Analysis backend returned no issue list",
                AnalysisErrorType.INVALID_CONTENT,
            )
        try:
            return _ISSUES.validate_python(data["issues"])
        except pydantic.ValidationError as e:
            raise AnalysisError(
                f"Analysis backend returned malformed issues: {e.error_count()} errors",
                AnalysisErrorType.INVALID_CONTENT,
            ) from e


def _analysis_error(status: int, data) -> AnalysisError:
    error_type = AnalysisErrorType.UNKNOWN
    message = f"Analysis backend responded with {status}"
    if isinstance(data, dict):
        try:
            error_type = AnalysisErrorType(data.get("errorType"))
        except ValueError:
            pass
        message = data.get("error") or message
    if status == 429:
        error_type = AnalysisErrorType.RATE_LIMIT
    return AnalysisError(message, error_type)


class UnconfiguredAnalyzer:
    async def analyze(self, request: AnalysisRequest) -> List[Issue]:
        raise AnalysisError(
            "No analysis backend configured", AnalysisErrorType.AI_SERVICE_ERROR
        )
