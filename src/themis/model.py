from __future__ import annotations

import enum
from typing import Iterable, Optional

import pydantic
from pydantic.alias_generators import to_camel


class CheckType(str, enum.Enum):
    APPLE_APP_STORE = "APPLE_APP_STORE"
    GOOGLE_PLAY_STORE = "GOOGLE_PLAY_STORE"
    CHROME_WEB_STORE = "CHROME_WEB_STORE"
    MOBILE_PLATFORMS = "MOBILE_PLATFORMS"
    BOTH = "BOTH"

    @property
    def display_name(self) -> str:
        return CHECK_TYPE_DISPLAY_NAMES[self]


CHECK_TYPE_DISPLAY_NAMES: dict[CheckType, str] = {
    CheckType.APPLE_APP_STORE: "App Store",
    CheckType.GOOGLE_PLAY_STORE: "Play Store",
    CheckType.CHROME_WEB_STORE: "Chrome Store",
    CheckType.MOBILE_PLATFORMS: "Mobile",
    CheckType.BOTH: "App Store & Play Store",
}

if set(CHECK_TYPE_DISPLAY_NAMES) != set(CheckType):
    raise RuntimeError("Every CheckType needs a display name")


class CheckStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckStatus.COMPLETED, CheckStatus.FAILED)


class Severity(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ApiModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Issue(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(extra="allow")

    severity: Severity
    description: str


class IssueSummary(ApiModel):
    total_issues: int = 0
    high_severity: int = 0
    medium_severity: int = 0
    low_severity: int = 0

    @classmethod
    def from_issues(cls, issues: Iterable[Issue]) -> IssueSummary:
        counts = {severity: 0 for severity in Severity}
        total = 0
        for issue in issues:
            total += 1
            counts[issue.severity] += 1
        return cls(
            total_issues=total,
            high_severity=counts[Severity.HIGH],
            medium_severity=counts[Severity.MEDIUM],
            low_severity=counts[Severity.LOW],
        )


class TriggerRequest(ApiModel):
    """Body of ``POST /checks``.

    The target is either ``repoId`` (resolved through GitHub, taking
    precedence) or ``owner`` and ``repo``.
    """

    repo_id: Optional[int] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    branch_name: Optional[str] = None
    check_type: CheckType = CheckType.MOBILE_PLATFORMS

    @property
    def branch(self) -> str:
        return self.branch_name or "main"


def format_check_type(value: CheckType | str) -> str:
    return CheckType(value).display_name
