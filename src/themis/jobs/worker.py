from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sanic.log import logger

from themis.exceptions import AnalysisError, AnalysisErrorType, InvalidTransition
from themis.jobs.types import AnalysisRequest, Analyzer
from themis.metric import error_counter
from themis.storage import CheckRunRow, CheckRunStore


class JobWorker:
    def __init__(self, store: CheckRunStore, analyzer: Analyzer):
        self.store = store
        self.analyzer = analyzer

    async def run(self, check_run_id: str) -> Optional[CheckRunRow]:
        """Execute one check run.

        Returns the terminal row, or ``None`` when the run could not be
        claimed, or was deleted or finished elsewhere while it was analysed.
        """
        if not self.store.claim(check_run_id):
            logger.info("Check run %s not claimable, skipping", check_run_id)
            return None

        row = self.store.get(check_run_id)
        if row is None:
            logger.warning("Check run %s vanished after claim", check_run_id)
            return None

        request = AnalysisRequest(
            check_run_id=row.id,
            owner=row.owner,
            repo=row.repo,
            branch_name=row.branch_name or "main",
            check_type=row.check_type,
        )

        logger.info(
            "Analyzing %s@%s for %s (check run %s)",
            request.full_name,
            request.branch_name,
            request.check_type.value,
            check_run_id,
        )

        try:
            issues = await self.analyzer.analyze(request)
        except asyncio.CancelledError:
            raise
        except AnalysisError as e:
            error_counter.labels(context="analysis").inc()
            logger.warning("Analysis of check run %s failed: %s", check_run_id, e)
            return self._finish(
                check_run_id,
                lambda: self.store.fail(check_run_id, e.detail, e.error_type),
            )
        except Exception as e:  # noqa: BLE001
            error_counter.labels(context="analysis").inc()
            logger.error(
                "Analysis of check run %s raised", check_run_id, exc_info=True
            )
            message = str(e) or type(e).__name__
            return self._finish(
                check_run_id,
                lambda: self.store.fail(
                    check_run_id, message, AnalysisErrorType.UNKNOWN
                ),
            )

        finished = self._finish(
            check_run_id, lambda: self.store.complete(check_run_id, issues)
        )
        if finished is None:
            return None
        logger.info(
            "Check run %s completed with %d issues", check_run_id, len(issues)
        )
        return finished

    def _finish(
        self, check_run_id: str, write: Callable[[], CheckRunRow]
    ) -> Optional[CheckRunRow]:
        try:
            return write()
        except InvalidTransition as e:
            logger.info("Dropping result of check run %s: %s", check_run_id, e.detail)
            return None


async def worker_loop(
    worker: JobWorker,
    *,
    sleep: float,
    batch_size: int,
    iterations: Optional[int] = None,
) -> None:
    logger.info("Entering worker loop")
    i = 0
    while iterations is None or i < iterations:
        i += 1
        try:
            logger.debug("Sleeping for %f", sleep)
            await asyncio.sleep(sleep)

            pending = worker.store.pending_ids(batch_size)
            if not pending:
                logger.debug("No pending check runs")
                continue

            logger.info("Processing %d pending check runs", len(pending))
            for check_run_id in pending:
                await worker.run(check_run_id)

        except (KeyboardInterrupt, asyncio.CancelledError):
            raise
        except Exception:  # noqa: BLE001
            error_counter.labels(context="worker_loop").inc()
            logger.error("Worker loop encountered error", exc_info=True)
