"""Crawl the mock review site over real HTTP with every hop untagged."""

from gleaner.browser.chain import AdapterChain
from gleaner.common.request_manager import AsyncRequestManager
from gleaner.data_types import CrawlRequest
from gleaner.engine import CrawlEngine
from gleaner.sites.game_reviews import GameReviewExtractor
from tests.utils import FakeSession, collect_results_async


class PlainGameReviewExtractor(GameReviewExtractor):
    listing_adapter = None
    hop1_adapter = None
    hop2_adapter = None


async def test_crawl_over_plain_fetch(server_url: str) -> None:
    session = FakeSession()
    fetcher = AsyncRequestManager(timeout=5.0, max_attempts=2, base_delay=0)
    chain = AdapterChain([], session, fetcher)
    extractor = PlainGameReviewExtractor(start_urls=[f"{server_url}/reviews"])
    on_data, results = collect_results_async()

    report = await CrawlEngine(
        extractor, chain, on_data=on_data, num_workers=3
    ).run()

    assert report.status == "completed"
    assert sorted(r.locator for r in results) == ["/r/1", "/r/2"]
    by_locator = {r.locator: r for r in results}
    assert by_locator["/r/1"].tags == ["Action", "Shooter"]
    assert by_locator["/r/2"].platforms == ["PS5", "Quest"]
    assert by_locator["/r/2"].score == 9.0
    # /r/3 has an unparseable score, /r/4 answers 500 until retries run out
    assert report.discarded == 2
    assert report.failed_chains == 1
    assert len(extractor.pending) == 0
    # The browser was never touched
    assert session.calls == []
    assert session.close_calls == 1


async def test_flaky_endpoint_recovers(server_url: str) -> None:
    async with AsyncRequestManager(max_attempts=3, base_delay=0) as manager:
        document = await manager.resolve_request(
            CrawlRequest(url=f"{server_url}/flaky", callback="parse")
        )

    assert document.status_code == 200
    assert "ok" in document.content
