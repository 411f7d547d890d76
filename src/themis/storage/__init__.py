from themis.storage.check_run_store import CheckRunStore
from themis.storage.types import (
    CheckRunRow,
    CompletedCheckRow,
    RunningCheckRow,
)

__all__ = [
    "CheckRunRow",
    "CheckRunStore",
    "CompletedCheckRow",
    "RunningCheckRow",
]
