from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Annotated, Any, List

import pydantic
from pydantic import BeforeValidator, PlainSerializer
from pydantic.alias_generators import to_camel

from themis.model import CheckStatus, CheckType, Issue, IssueSummary


def parse_utc_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        dt = datetime.fromisoformat(raw)
    else:
        raise ValueError(f"Unsupported datetime value type: {type(value)!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


UTCDateTime = Annotated[
    datetime,
    BeforeValidator(parse_utc_datetime),
    PlainSerializer(format_utc_datetime, return_type=str, when_used="always"),
]


def _parse_issues(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def issue_count(raw: Any) -> int:
    if raw is None:
        return 0
    try:
        value = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except ValueError:
        return 0
    return len(value) if isinstance(value, list) else 0


class StorageModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        extra="ignore",
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CheckRunRow(StorageModel):
    id: str
    repository_id: str
    owner: str
    repo: str
    branch_name: str | None = None
    check_type: CheckType
    status: CheckStatus
    issues: Annotated[List[Issue], BeforeValidator(_parse_issues)] = pydantic.Field(
        default_factory=list
    )
    error_type: str | None = None
    error_message: str | None = None
    created_at: UTCDateTime
    started_at: UTCDateTime | None = None
    completed_at: UTCDateTime | None = None

    @property
    def summary(self) -> IssueSummary:
        return IssueSummary.from_issues(self.issues)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.status == CheckStatus.COMPLETED:
            payload["summary"] = self.summary.to_payload()
        return payload


class CompletedCheckRow(StorageModel):
    id: str
    repository_id: str
    owner: str
    repo: str
    check_type: CheckType
    completed_at: UTCDateTime
    issue_count: int = 0


class RunningCheckRow(StorageModel):
    id: str
    repository_id: str
    owner: str
    repo: str
    check_type: CheckType
    status: CheckStatus
    created_at: UTCDateTime
