"""Gleaner CLI: run crawls, inspect extractors, serve stored reviews.

Usage:
    gleaner inspect module.path:ExtractorClass
    gleaner run module.path:ExtractorClass --db reviews.db
    gleaner run module.path:ExtractorClass --settings crawl.toml --jsonl out.jsonl
    gleaner serve --db reviews.db
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from contextlib import ExitStack
from pathlib import Path

import click
import uvicorn
from pydantic import ValidationError

from gleaner.browser.chain import AdapterChain
from gleaner.browser.session import BrowserSession
from gleaner.callbacks import (
    DataCallback,
    combine_callbacks,
    count_data,
    save_to_jsonl_file,
    store_reviews,
)
from gleaner.common.request_manager import AsyncRequestManager
from gleaner.data_types import BaseExtractor
from gleaner.engine import CrawlEngine, CrawlReport
from gleaner.settings import CrawlSettings, load_settings
from gleaner.store.review_store import ReviewStore

logger = logging.getLogger(__name__)


def import_extractor(extractor_path: str) -> type[BaseExtractor]:
    """Import an extractor class from ``"module.path:ClassName"``.

    Raises:
        click.BadParameter: If the format is invalid or the import fails.
    """
    if ":" not in extractor_path:
        raise click.BadParameter(
            f"Invalid extractor path '{extractor_path}'. "
            "Expected format: 'module.path:ClassName'"
        )

    module_path, class_name = extractor_path.rsplit(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise click.BadParameter(
            f"Could not import module '{module_path}': {e}"
        ) from e

    extractor_class = getattr(module, class_name, None)
    if not (
        isinstance(extractor_class, type)
        and issubclass(extractor_class, BaseExtractor)
    ):
        raise click.BadParameter(
            f"'{extractor_path}' is not a BaseExtractor subclass"
        )
    return extractor_class


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def run_crawl(
    extractor: BaseExtractor,
    settings: CrawlSettings,
    on_data: DataCallback | None = None,
    store: ReviewStore | None = None,
) -> CrawlReport:
    """Wire session, fetcher, chain and engine for one run."""
    fetch = settings.fetch
    fetcher = AsyncRequestManager(
        timeout=fetch.timeout,
        max_attempts=fetch.max_attempts,
        base_delay=fetch.base_delay,
        max_delay=fetch.max_delay,
        limiter=fetch.build_limiter(),
    )
    session = BrowserSession(settings.browser)
    chain = AdapterChain.from_settings(settings, session, fetcher)

    callbacks: list[DataCallback] = []
    if on_data is not None:
        callbacks.append(on_data)
    if store is not None:
        callbacks.append(store_reviews(store))

    engine = CrawlEngine(
        extractor,
        chain,
        on_data=combine_callbacks(*callbacks),
        num_workers=fetch.workers,
    )
    return await engine.run()


@click.group()
@click.version_option(package_name="gleaner")
def cli() -> None:
    """Gleaner: browser-assisted review crawler."""


@cli.command()
@click.argument("extractor")
def inspect(extractor: str) -> None:
    """Show an extractor's start URLs and adapter tags.

    EXTRACTOR is a dotted import path in the form module.path:ClassName.
    """
    extractor_class = import_extractor(extractor)
    click.echo(f"Class:     {extractor_class.__name__}")
    click.echo(f"Module:    {extractor_class.__module__}")

    start_urls = getattr(extractor_class, "start_urls", [])
    click.echo(f"\nStart URLs ({len(start_urls)}):")
    for url in start_urls:
        click.echo(f"  {url}")

    click.echo("\nAdapters:")
    for attr in ("listing_adapter", "hop1_adapter", "hop2_adapter"):
        tag = getattr(extractor_class, attr, None)
        if attr == "listing_adapter" or tag is not None:
            click.echo(f"  {attr}: {tag.value if tag else 'plain fetch'}")

    policy = getattr(extractor_class, "hop2_failure_policy", None)
    if policy is not None:
        click.echo(f"\nHop-2 failure policy: {policy.value}")


@cli.command()
@click.argument("extractor")
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="TOML settings file.",
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="SQLite database to store reviews in.",
)
@click.option(
    "--jsonl",
    "jsonl_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write each review as a JSON line to this file.",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Plain-fetch workers (overrides settings).",
)
@click.option("--headed", is_flag=True, help="Show the browser window.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def run(
    extractor: str,
    settings_path: str | None,
    db_path: str | None,
    jsonl_path: str | None,
    workers: int | None,
    headed: bool,
    verbose: bool,
) -> None:
    """Run a crawl and print its report.

    EXTRACTOR is a dotted import path in the form module.path:ClassName.
    Exits with status 1 when the run aborted.

    \b
    Examples:
        gleaner run gleaner.sites.game_reviews:GameReviewExtractor --db reviews.db
        gleaner run my.site:MyExtractor --settings crawl.toml --headed
    """
    configure_logging(verbose)
    extractor_class = import_extractor(extractor)

    try:
        settings = load_settings(settings_path)
    except ValidationError as e:
        raise click.ClickException(f"Invalid settings: {e}") from e
    if workers is not None:
        settings.fetch.workers = workers
    if headed:
        settings.browser.headless = False

    async def _main() -> CrawlReport:
        store = await ReviewStore.open(db_path) if db_path else None
        counter = [0]
        try:
            with ExitStack() as stack:
                callbacks: list[DataCallback] = [count_data(counter)]
                if jsonl_path:
                    handle = stack.enter_context(
                        Path(jsonl_path).open("w", encoding="utf-8")
                    )
                    callbacks.append(save_to_jsonl_file(handle))
                return await run_crawl(
                    extractor_class(),
                    settings,
                    on_data=combine_callbacks(*callbacks),
                    store=store,
                )
        finally:
            if store is not None:
                await store.close()

    report = asyncio.run(_main())
    click.echo(report.summary())
    if report.status in ("aborted", "error"):
        raise SystemExit(1)


@cli.command()
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False),
    required=True,
    help="SQLite database holding stored reviews.",
)
@click.option(
    "--host",
    default="127.0.0.1",
    show_default=True,
    help="Host to bind the server to.",
)
@click.option(
    "--port",
    default=8000,
    show_default=True,
    type=int,
    help="Port to bind the server to.",
)
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging.")
def serve(db_path: str, host: str, port: int, verbose: bool) -> None:
    """Start the review browser."""
    from gleaner.web.app import create_app

    configure_logging(verbose)
    app = create_app(db_path)

    click.echo(f"Starting web server at http://{host}:{port}")
    click.echo(f"Database: {Path(db_path).absolute()}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
