"""Checked HTML element wrapper for safe XPath/CSS querying.

CheckedHtmlElement wraps lxml.html.HtmlElement and validates selector
results against expected counts, so a site markup change surfaces as an
HTMLStructuralAssumptionException instead of a silently empty field.
"""

from __future__ import annotations

from typing import overload

from lxml import html as lxml_html
from lxml.html import HtmlElement

from gleaner.common.exceptions import (
    HTMLStructuralAssumptionException,
    ScraperAssumptionException,
)


def parse_document(content: str, url: str = "") -> CheckedHtmlElement:
    """Parse rendered HTML into a CheckedHtmlElement.

    Args:
        content: The HTML text.
        url: The document URL, used for error context.

    Raises:
        ScraperAssumptionException: If the content cannot be parsed.
    """
    try:
        return CheckedHtmlElement(lxml_html.fromstring(content), url)
    except Exception as e:
        raise ScraperAssumptionException(
            f"Failed to parse HTML: {e}",
            request_url=url,
            context={"error": str(e)},
        ) from e


class CheckedHtmlElement:
    """Wrapper around HtmlElement with validated selectors."""

    def __init__(self, element: HtmlElement, request_url: str = "") -> None:
        self._element = element
        self._request_url = request_url

    @overload
    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
        *,
        type: type[str],
    ) -> list[str]: ...

    @overload
    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]: ...

    def checked_xpath(
        self,
        xpath: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
        *,
        type: type[str] | None = None,
    ) -> list[CheckedHtmlElement] | list[str]:
        """Execute XPath query with count validation.

        Args:
            xpath: XPath expression to execute.
            description: Human-readable description of what's being selected.
            min_count: Minimum number of results expected (default: 1).
            max_count: Maximum number of results expected (None = unlimited).
            type: Pass `str` to return only string results (text/attributes).
                If omitted, returns only CheckedHtmlElements.

        Raises:
            HTMLStructuralAssumptionException: If count doesn't match expectations.

        Example::

            tree = parse_document(document.content, document.url)
            cards = tree.checked_xpath("//article[@class='review']", "reviews")
            hrefs = tree.checked_xpath("//a/@href", "links", type=str)
        """
        results = self._element.xpath(xpath)

        if type is str:
            filtered: list[str] = [
                str(r) for r in results if isinstance(r, str)
            ]
            self._check_count(
                xpath, "xpath", description, min_count, max_count,
                len(filtered), is_element_query=False,
            )
            return filtered

        wrapped: list[CheckedHtmlElement] = [
            CheckedHtmlElement(r, self._request_url)
            for r in results
            if isinstance(r, HtmlElement)
        ]
        self._check_count(
            xpath, "xpath", description, min_count, max_count, len(wrapped)
        )
        return wrapped

    def checked_css(
        self,
        selector: str,
        description: str,
        min_count: int = 1,
        max_count: int | None = None,
    ) -> list[CheckedHtmlElement]:
        """Execute CSS selector query with count validation.

        Raises:
            HTMLStructuralAssumptionException: If count doesn't match
                expectations or the selector is invalid.
        """
        try:
            results = self._element.cssselect(selector)
        except Exception as e:
            raise HTMLStructuralAssumptionException(
                selector=selector,
                selector_type="css",
                description=description,
                expected_min=min_count,
                expected_max=max_count,
                actual_count=0,
                request_url=self._request_url,
            ) from e

        self._check_count(
            selector, "css", description, min_count, max_count, len(results)
        )
        return [
            CheckedHtmlElement(result, self._request_url) for result in results
        ]

    def text_of(self, xpath: str, description: str) -> str | None:
        """Return the stripped text of the first match, or None.

        Missing and blank matches both return None so callers can decide
        whether the field is required.
        """
        matches = self.checked_xpath(xpath, description, min_count=0)
        if not matches:
            return None
        text = matches[0].text_content().strip()
        return text or None

    def _check_count(
        self,
        selector: str,
        selector_type: str,
        description: str,
        min_count: int,
        max_count: int | None,
        actual_count: int,
        is_element_query: bool = True,
    ) -> None:
        if actual_count < min_count or (
            max_count is not None and actual_count > max_count
        ):
            raise HTMLStructuralAssumptionException(
                selector=selector,
                selector_type=selector_type,
                description=description,
                expected_min=min_count,
                expected_max=max_count,
                actual_count=actual_count,
                request_url=self._request_url,
                is_element_query=is_element_query,
            )

    def __getattr__(self, name: str):
        """Delegate all other attributes to the wrapped element."""
        return getattr(self._element, name)
