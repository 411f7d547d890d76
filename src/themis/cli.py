import asyncio
import logging
import os

import typer

from themis import config
from themis.client import ThemisClient
from themis.db_migrations import migrate_db
from themis.exceptions import MissingPrerequisiteError
from themis.jobs import HttpAnalyzer, JobWorker, UnconfiguredAnalyzer, worker_loop
from themis.logger import configure_logging
from themis.notify import (
    DiskLedgerStore,
    LogSink,
    NotificationDeduplicator,
    NotifiersSink,
)
from themis.poller import Outcome, PollerSettings, PollResult, describe, run_check
from themis.storage import CheckRunStore


logger = logging.getLogger("themis")

app = typer.Typer()


@app.callback()
def init():
    configure_logging()


@app.command()
def serve(host: str = "0.0.0.0", port: int = 8000):
    from themis.web import create_app

    create_app().run(host=host, port=port, single_process=True)


@app.command()
def migrate(revision: str = "head"):
    migrate_db(config.DB_PATH, revision=revision)


@app.command()
def worker():
    store = CheckRunStore(config.DB_PATH)
    store.initialize()

    async def handle():
        if config.ANALYZER_URL is None:
            logger.warning("ANALYZER_URL not set, every check run will fail")
            analyzer = UnconfiguredAnalyzer()
        else:
            analyzer = HttpAnalyzer(config.ANALYZER_URL, timeout=config.ANALYZER_TIMEOUT)
        await worker_loop(
            JobWorker(store, analyzer),
            sleep=config.WORKER_SLEEP,
            batch_size=config.WORKER_BATCH_SIZE,
        )

    asyncio.run(handle())


def _report(result: PollResult) -> None:
    for line in describe(result):
        typer.echo(line, err=result.outcome is not Outcome.PASSED)


@app.command("ci-check")
def ci_check():
    try:
        settings = PollerSettings.from_env(os.environ)
    except MissingPrerequisiteError as e:
        typer.echo(f"Error: {e.detail}", err=True)
        raise typer.Exit(Outcome.MISSING_PREREQUISITE.exit_code)

    async def handle() -> PollResult:
        client = ThemisClient(settings.app_url, api_key=settings.api_key)
        async with client.connect():
            return await run_check(settings, client, echo=typer.echo)

    result = asyncio.run(handle())
    _report(result)
    raise typer.Exit(result.exit_code)


@app.command()
def notify(
    provider: str = typer.Option(None, help="notifiers provider, e.g. telegram"),
    interval: float = 10.0,
):
    provider = provider or config.NOTIFY_PROVIDER
    api_key = os.environ.get("THEMIS_API_KEY")
    if provider == "telegram":
        sink = NotifiersSink(
            "telegram", token=config.TELEGRAM_TOKEN, chat_id=config.TELEGRAM_CHAT_ID
        )
    elif provider:
        sink = NotifiersSink(provider)
    else:
        sink = LogSink()

    ledger = DiskLedgerStore(config.DISKCACHE_DIR + "/notifications")

    async def handle():
        client = ThemisClient(config.APP_URL, api_key=api_key)
        async with client.connect():
            deduplicator = NotificationDeduplicator(
                feed=client.list_completed_since,
                store=ledger,
                sink=sink,
                app_url=config.APP_URL,
            )
            await deduplicator.run(interval=interval)

    try:
        asyncio.run(handle())
    finally:
        ledger.close()
