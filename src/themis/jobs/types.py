from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

from themis.model import CheckType, Issue


@dataclass(frozen=True)
class AnalysisRequest:
    check_run_id: str
    owner: str
    repo: str
    branch_name: str
    check_type: CheckType

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class Analyzer(Protocol):
    async def analyze(self, request: AnalysisRequest) -> List[Issue]:
        ...


class Dispatcher(Protocol):
    async def dispatch(self, check_run_id: str) -> None:
        ...


class RepositoryResolver(Protocol):
    async def resolve(self, repo_id: int) -> tuple[str, str]:
        """Return ``(owner, repo)`` for a GitHub repository id."""
        ...
