"""Run configuration.

CrawlSettings is a pydantic model loadable from a TOML file::

    adapter_order = ["scroll_pagination", "delay_load"]

    [delay]
    min_seconds = 1.0
    max_seconds = 3.0

    [scroll]
    initial_marker = "article.review-card"
    continuation_marker = "section[data-page='{ordinal}']"

    [fetch]
    workers = 4
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate

from gleaner.data_types import AdapterTag


class DelaySettings(BaseModel):
    """Bounds of the uniform pre-navigation delay, in seconds."""

    min_seconds: float = Field(default=1.0, ge=0)
    max_seconds: float = Field(default=3.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> DelaySettings:
        if self.min_seconds > self.max_seconds:
            raise ValueError(
                f"delay min_seconds ({self.min_seconds}) exceeds "
                f"max_seconds ({self.max_seconds})"
            )
        return self


class ScrollSettings(BaseModel):
    """Markers and selectors driving the scroll-pagination adapter.

    ``continuation_marker`` is a CSS selector template; ``{ordinal}`` is
    replaced with the page ordinal the adapter waits for.
    """

    initial_marker: str = "[data-page='1']"
    continuation_marker: str = "[data-page='{ordinal}']"
    load_more_selector: str = "a.load-more"
    cursor_xpath: str = "(//*[@data-page])[last()]/@data-page"
    timeout_ms: int = Field(default=10_000, gt=0)

    @field_validator("continuation_marker")
    @classmethod
    def _needs_ordinal(cls, value: str) -> str:
        if "{ordinal}" not in value:
            raise ValueError("continuation_marker must contain '{ordinal}'")
        return value


class BrowserLaunchSettings(BaseModel):
    browser_type: Literal["chromium", "firefox", "webkit"] = "chromium"
    headless: bool = True
    viewport: dict[str, int] | None = Field(
        default_factory=lambda: {"width": 1280, "height": 900}
    )
    user_agent: str | None = None
    locale: str | None = None
    timezone_id: str | None = None
    navigation_timeout_ms: int = Field(default=30_000, gt=0)


class FetchSettings(BaseModel):
    """Plain-fetch worker pool and retry policy."""

    workers: int = Field(default=4, ge=1)
    timeout: float | None = 30.0
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    requests_per_second: int | None = Field(default=None, ge=1)

    def build_limiter(self) -> Limiter | None:
        """Build a pyrate_limiter Limiter, or None when unthrottled."""
        if self.requests_per_second is None:
            return None
        rates = [Rate(self.requests_per_second, Duration.SECOND)]
        return Limiter(InMemoryBucket(rates))


class CrawlSettings(BaseModel):
    """Everything a crawl run reads from configuration.

    ``adapters`` maps an adapter kind to the tag it answers to; the default
    is the identity mapping. ``adapter_order`` fixes dispatch order.
    """

    adapter_order: list[AdapterTag] = Field(
        default_factory=lambda: [
            AdapterTag.SCROLL_PAGINATION,
            AdapterTag.DELAY_LOAD,
        ]
    )
    adapters: dict[Literal["delay_load", "scroll_pagination"], AdapterTag] = (
        Field(
            default_factory=lambda: {
                "delay_load": AdapterTag.DELAY_LOAD,
                "scroll_pagination": AdapterTag.SCROLL_PAGINATION,
            }
        )
    )
    delay: DelaySettings = Field(default_factory=DelaySettings)
    scroll: ScrollSettings = Field(default_factory=ScrollSettings)
    browser: BrowserLaunchSettings = Field(
        default_factory=BrowserLaunchSettings
    )
    fetch: FetchSettings = Field(default_factory=FetchSettings)

    @field_validator("adapter_order")
    @classmethod
    def _unique_order(cls, value: list[AdapterTag]) -> list[AdapterTag]:
        if len(set(value)) != len(value):
            raise ValueError("adapter_order lists a tag more than once")
        return value

    @model_validator(mode="after")
    def _distinct_identities(self) -> CrawlSettings:
        # Kinds left out of the mapping answer to their own tag
        self.adapters.setdefault("delay_load", AdapterTag.DELAY_LOAD)
        self.adapters.setdefault(
            "scroll_pagination", AdapterTag.SCROLL_PAGINATION
        )
        tags = list(self.adapters.values())
        if len(set(tags)) != len(tags):
            raise ValueError("two adapter kinds answer to the same tag")
        return self


def load_settings(path: str | Path | None) -> CrawlSettings:
    """Load settings from a TOML file, or defaults when ``path`` is None.

    Raises:
        pydantic.ValidationError: If the file content is invalid.
    """
    if path is None:
        return CrawlSettings()
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return CrawlSettings.model_validate(data)
