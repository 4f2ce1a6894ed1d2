"""
Page query - the narrow set of DOM reads and navigations the crawl needs.

Site adapters and the extractor only talk to this interface, so they can be
exercised against a fake page in tests. ``PlaywrightPageQuery`` is the single
implementation backed by a real browser tab.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)


class BrowserLaunchError(RuntimeError):
    """Raised when a browser cannot be started or reached."""


class PageQuery:
    """Interface consumed by the pagination driver, extractor and adapters"""

    @property
    def url(self) -> str:
        raise NotImplementedError

    def goto(self, url: str) -> None:
        raise NotImplementedError

    def wait(self, milliseconds: int) -> None:
        raise NotImplementedError

    def find_links(self, selector: str) -> List[Dict[str, str]]:
        """Return ``[{"text": ..., "href": ...}]`` for every matching anchor."""
        raise NotImplementedError

    def find_text(self, selector: str) -> Optional[str]:
        """Rendered text of the first match, or None when nothing matches."""
        raise NotImplementedError

    def find_texts(self, selector: str) -> List[str]:
        raise NotImplementedError

    def find_rows(self, row_selector: str, cell_selectors: List[str]) -> List[List[Optional[str]]]:
        """For each row match, the text of each cell selector inside it (None when absent)."""
        raise NotImplementedError

    def get_attribute(self, selector: str, name: str) -> Optional[str]:
        raise NotImplementedError

    def exists(self, selector: str) -> bool:
        raise NotImplementedError

    def wait_for(self, selector: str, timeout: int) -> bool:
        raise NotImplementedError

    def click_and_wait(self, selector: str) -> None:
        """Click the first match and wait for the resulting navigation."""
        raise NotImplementedError

    def new_surface(self) -> "PageQuery":
        """Open an auxiliary tab in the same browsing context."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class PlaywrightPageQuery(PageQuery):
    def __init__(self, page: Page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    def goto(self, url: str) -> None:
        self.page.goto(url, wait_until="domcontentloaded")

    def wait(self, milliseconds: int) -> None:
        if milliseconds > 0:
            self.page.wait_for_timeout(milliseconds)

    def _extract_text(self, element) -> str:
        if not element:
            return ""
        try:
            text = element.inner_text().strip()
        except PlaywrightError:
            text = ""
        if not text:
            try:
                text = (element.text_content() or "").strip()
            except PlaywrightError:
                text = ""
        return text

    def find_links(self, selector: str) -> List[Dict[str, str]]:
        links = []
        for element in self.page.query_selector_all(selector):
            # The DOM property resolves relative hrefs against the page URL
            href = element.evaluate("el => el.href || el.getAttribute('href') || ''") or ""
            links.append({"text": self._extract_text(element), "href": href})
        return links

    def find_text(self, selector: str) -> Optional[str]:
        element = self.page.query_selector(selector)
        if not element:
            return None
        return self._extract_text(element)

    def find_texts(self, selector: str) -> List[str]:
        return [self._extract_text(element) for element in self.page.query_selector_all(selector)]

    def find_rows(self, row_selector: str, cell_selectors: List[str]) -> List[List[Optional[str]]]:
        rows = []
        for row in self.page.query_selector_all(row_selector):
            cells: List[Optional[str]] = []
            for cell_selector in cell_selectors:
                cell = row.query_selector(cell_selector)
                cells.append(self._extract_text(cell) if cell else None)
            rows.append(cells)
        return rows

    def get_attribute(self, selector: str, name: str) -> Optional[str]:
        element = self.page.query_selector(selector)
        if not element:
            return None
        return element.get_attribute(name)

    def exists(self, selector: str) -> bool:
        return self.page.query_selector(selector) is not None

    def wait_for(self, selector: str, timeout: int) -> bool:
        try:
            self.page.wait_for_selector(selector, timeout=timeout)
            return True
        except PlaywrightTimeoutError:
            return False

    def click_and_wait(self, selector: str) -> None:
        try:
            with self.page.expect_navigation(wait_until="domcontentloaded"):
                self.page.click(selector)
        except PlaywrightTimeoutError as exc:
            # Some pagers swap results in place without a navigation event
            logger.debug("No navigation after clicking %s: %s", selector, exc)

    def new_surface(self) -> "PlaywrightPageQuery":
        return PlaywrightPageQuery(self.page.context.new_page())

    def close(self) -> None:
        try:
            if not self.page.is_closed():
                self.page.close()
        except Exception:
            logger.debug("Page close failed", exc_info=True)
