"""Review browser.

Two request types over the review store:

- ``GET /`` renders the first page of results as server-side HTML
- ``GET /api/results`` returns a page of results as JSON for incremental
  loading (``{"items": [...], "has_more": bool, "offset": int}``)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from html import escape
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse

from gleaner.common.data_models import Review
from gleaner.store.review_store import RangeFilter, ReviewPage, ReviewStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20

_CSS = """\
body { font-family: system-ui, sans-serif; max-width: 960px; margin: 2em auto;
       padding: 0 1em; color: #222; }
h1 { border-bottom: 2px solid #444; padding-bottom: .3em; }
article.review { border: 1px solid #ddd; border-radius: 6px; padding: 1em;
                 margin: 1em 0; }
.score { float: right; font-size: 1.6em; font-weight: bold; }
.labels span { display: inline-block; background: #eee; border-radius: 3px;
               padding: .1em .5em; margin-right: .3em; font-size: .85em; }
.meta { color: #777; font-size: .9em; }
"""

_LOAD_MORE_JS = """\
document.addEventListener("click", async (event) => {
  const button = event.target.closest("#load-more");
  if (!button) return;
  const params = new URLSearchParams(window.location.search);
  params.set("offset", button.dataset.offset);
  const response = await fetch("/api/results?" + params.toString());
  const page = await response.json();
  const list = document.getElementById("results");
  for (const item of page.items) {
    list.insertAdjacentHTML("beforeend",
      `<article class="review"><h2>${item.title}</h2>` +
      `<span class="score">${item.score}</span></article>`);
  }
  if (page.has_more) {
    button.dataset.offset = page.offset + page.items.length;
  } else {
    button.remove();
  }
});
"""


class ResultQuery:
    """Query-string parameters shared by both routes."""

    def __init__(
        self,
        platform: list[str] | None = Query(None),
        tag: list[str] | None = Query(None),
        reviewer: list[str] | None = Query(None),
        min_score: float | None = Query(None, ge=0, le=10),
        max_score: float | None = Query(None, ge=0, le=10),
        published_after: date | None = Query(None),
        published_before: date | None = Query(None),
        sort: str = Query("-published"),
        offset: int = Query(0, ge=0),
        limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    ) -> None:
        self.equals: dict[str, list[str]] = {}
        if platform:
            self.equals["platforms"] = platform
        if tag:
            self.equals["tags"] = tag
        if reviewer:
            self.equals["reviewer"] = reviewer

        score_bounded = min_score is not None or max_score is not None
        date_bounded = published_after is not None or published_before is not None
        if score_bounded and date_bounded:
            raise HTTPException(
                status_code=400,
                detail="Filter on score or on publication date, not both",
            )
        self.range_filter: RangeFilter | None = None
        if score_bounded:
            self.range_filter = RangeFilter("score", min_score, max_score)
        elif date_bounded:
            self.range_filter = RangeFilter(
                "published", published_after, published_before
            )

        self.sort = sort
        self.offset = offset
        self.limit = limit

    async def run(self, store: ReviewStore) -> ReviewPage:
        try:
            return await store.query(
                equals=self.equals,
                range_filter=self.range_filter,
                sort=self.sort,
                offset=self.offset,
                page_size=self.limit,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e


def get_store(request: Request) -> ReviewStore:
    return request.app.state.store


def _render_review(review: Review) -> str:
    platforms = "".join(f"<span>{escape(p)}</span>" for p in review.platforms)
    tags = "".join(f"<span>{escape(t)}</span>" for t in review.tags)
    meta = []
    if review.reviewer:
        meta.append(f"by {escape(review.reviewer)}")
    if review.published:
        meta.append(review.published.isoformat())
    pros = "".join(f"<li>{escape(p)}</li>" for p in review.pros)
    cons = "".join(f"<li>{escape(c)}</li>" for c in review.cons)
    return f"""\
<article class="review">
  <span class="score">{review.score:g}</span>
  <h2><a href="{escape(review.locator)}">{escape(review.title)}</a></h2>
  <p class="meta">{" &middot; ".join(meta)}</p>
  <p class="labels">{platforms}{tags}</p>
  <p>{escape(review.summary or "")}</p>
  {f'<ul class="pros">{pros}</ul>' if pros else ""}
  {f'<ul class="cons">{cons}</ul>' if cons else ""}
</article>"""


def _render_page(page: ReviewPage) -> str:
    items = "\n".join(_render_review(review) for review in page.items)
    if not items:
        items = "<p>No reviews match.</p>"
    load_more = ""
    if page.has_more:
        load_more = (
            f'<button id="load-more" data-offset="{page.next_offset}">'
            "Load more</button>"
        )
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Reviews</title>
  <style>{_CSS}</style>
</head>
<body>
  <h1>Reviews</h1>
  <div id="results">
{items}
  </div>
  {load_more}
  <script>{_LOAD_MORE_JS}</script>
</body>
</html>"""


def create_app(db_path: Path | str) -> FastAPI:
    """Create the review browser bound to the SQLite file at ``db_path``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.store = await ReviewStore.open(db_path)
        logger.info(f"Serving reviews from {db_path}")
        yield
        await app.state.store.close()

    app = FastAPI(title="Gleaner reviews", version="0.1.0", lifespan=lifespan)

    @app.get("/", response_class=HTMLResponse)
    async def index(
        query: ResultQuery = Depends(),
        store: ReviewStore = Depends(get_store),
    ) -> HTMLResponse:
        page = await query.run(store)
        return HTMLResponse(content=_render_page(page))

    @app.get("/api/results")
    async def results(
        query: ResultQuery = Depends(),
        store: ReviewStore = Depends(get_store),
    ) -> dict[str, Any]:
        page = await query.run(store)
        return {
            "items": [review.model_dump(mode="json") for review in page.items],
            "has_more": page.has_more,
            "offset": page.offset,
        }

    return app
