from themis.jobs.analyzer import HttpAnalyzer, UnconfiguredAnalyzer
from themis.jobs.dispatcher import DeferredDispatcher, InProcessDispatcher
from themis.jobs.trigger import JobTrigger, parse_trigger_request
from themis.jobs.types import (
    AnalysisRequest,
    Analyzer,
    Dispatcher,
    RepositoryResolver,
)
from themis.jobs.worker import JobWorker, worker_loop

__all__ = [
    "AnalysisRequest",
    "Analyzer",
    "DeferredDispatcher",
    "Dispatcher",
    "HttpAnalyzer",
    "InProcessDispatcher",
    "JobTrigger",
    "JobWorker",
    "RepositoryResolver",
    "UnconfiguredAnalyzer",
    "parse_trigger_request",
    "worker_loop",
]
