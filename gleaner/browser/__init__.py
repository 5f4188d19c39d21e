"""Browser-side resolution: the shared session, adapters and their chain."""

from gleaner.browser.adapters import (
    AdapterState,
    AutomationAdapter,
    DelayThenLoadAdapter,
    ScrollPaginationAdapter,
)
from gleaner.browser.chain import AdapterChain, Fetcher
from gleaner.browser.session import BrowserSession

__all__ = [
    "AdapterChain",
    "AdapterState",
    "AutomationAdapter",
    "BrowserSession",
    "DelayThenLoadAdapter",
    "Fetcher",
    "ScrollPaginationAdapter",
]
