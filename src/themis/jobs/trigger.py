from __future__ import annotations

from typing import Any, Mapping, Optional

import pydantic
from sanic.log import logger

from themis.exceptions import AnalysisErrorType, ValidationError
from themis.jobs.types import Dispatcher, RepositoryResolver
from themis.metric import check_triggered_counter, error_counter
from themis.model import TriggerRequest
from themis.storage import CheckRunRow, CheckRunStore


def parse_trigger_request(body: Any) -> TriggerRequest:
    if not isinstance(body, Mapping):
        raise ValidationError("Request body must be a JSON object")
    try:
        return TriggerRequest.model_validate(body)
    except pydantic.ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ValidationError(f"Invalid check request: {', '.join(fields)}") from e


class JobTrigger:
    def __init__(
        self,
        store: CheckRunStore,
        dispatcher: Dispatcher,
        resolver: Optional[RepositoryResolver] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.resolver = resolver

    async def target(self, request: TriggerRequest) -> tuple[str, str]:
        owner, repo = request.owner, request.repo
        if request.repo_id is not None and self.resolver is not None:
            owner, repo = await self.resolver.resolve(request.repo_id)
        if not owner or not repo:
            raise ValidationError("Missing repository information")
        return owner, repo

    async def trigger(self, request: TriggerRequest) -> CheckRunRow:
        owner, repo = await self.target(request)
        row = self.store.create(
            owner=owner,
            repo=repo,
            branch_name=request.branch,
            check_type=request.check_type,
        )
        check_triggered_counter.labels(check_type=request.check_type.value).inc()
        logger.info(
            "Triggered %s check %s for %s@%s",
            request.check_type.value,
            row.id,
            row.repository_id,
            request.branch,
        )

        try:
            await self.dispatcher.dispatch(row.id)
        except Exception as e:  # noqa: BLE001
            error_counter.labels(context="dispatch").inc()
            logger.error("Could not dispatch check run %s", row.id, exc_info=True)
            return self.store.fail(
                row.id, f"Could not start analysis: {e}", AnalysisErrorType.UNKNOWN
            )
        return row
