"""
Shared fixtures: a browser-free page double and scripted site adapters.
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models import CompanyCandidate, CompanyLink, EntityOutcome
from page_query import PageQuery
from site_adapters import NextPage, SiteAdapter


class FakePage(PageQuery):
    """
    In-memory page keyed by URL.

    ``site`` maps a URL to a dict with optional keys ``links`` (selector ->
    list of {"text", "href"}), ``text`` (selector -> str), ``texts``
    (selector -> list), ``rows`` ((row_selector, tuple(cells)) -> rows),
    ``attrs`` ((selector, name) -> value) and ``present`` (selectors).
    """

    def __init__(self, site: Optional[Dict[str, dict]] = None, url: str = "",
                 on_click: Optional[Callable[["FakePage", str], None]] = None):
        self.site = site if site is not None else {}
        self._url = url
        self.on_click = on_click
        self.visits: List[str] = []
        self.waits: List[int] = []
        self.clicks: List[str] = []
        self.surfaces: List["FakePage"] = []
        self.closed = False

    def _dom(self) -> dict:
        dom = self.site.get(self._url, {})
        if isinstance(dom, Exception):
            raise dom
        return dom

    @property
    def url(self) -> str:
        return self._url

    def goto(self, url: str) -> None:
        self.visits.append(url)
        self._url = url
        self._dom()

    def wait(self, milliseconds: int) -> None:
        self.waits.append(milliseconds)

    def find_links(self, selector: str):
        return list(self._dom().get("links", {}).get(selector, []))

    def find_text(self, selector: str):
        return self._dom().get("text", {}).get(selector)

    def find_texts(self, selector: str):
        return list(self._dom().get("texts", {}).get(selector, []))

    def find_rows(self, row_selector: str, cell_selectors):
        return [list(r) for r in self._dom().get("rows", {}).get((row_selector, tuple(cell_selectors)), [])]

    def get_attribute(self, selector: str, name: str):
        return self._dom().get("attrs", {}).get((selector, name))

    def exists(self, selector: str) -> bool:
        return selector in self._dom().get("present", ())

    def wait_for(self, selector: str, timeout: int) -> bool:
        return self.exists(selector)

    def click_and_wait(self, selector: str) -> None:
        self.clicks.append(selector)
        if self.on_click is not None:
            self.on_click(self, selector)

    def new_surface(self) -> "FakePage":
        surface = FakePage(self.site)
        self.surfaces.append(surface)
        return surface

    def close(self) -> None:
        self.closed = True


class ScriptedSearchAdapter(SiteAdapter):
    """Search pages come from a list; the last page reports ``final_state``."""

    name = "scripted"
    label = "Scripted"
    header = ["company", "phone", "email", "url"]
    delay_ms = 0
    next_page_selector = "#next"

    def __init__(self, pages: List[List[CompanyLink]], final_state: NextPage = NextPage.ABSENT,
                 stop_when_no_links: bool = False):
        super().__init__()
        self.pages = pages
        self.final_state = final_state
        self.stop_when_no_links = stop_when_no_links
        self.index = 0

    def extract_links(self, page):
        return list(self.pages[self.index])

    def next_page_control(self, page):
        if self.index < len(self.pages) - 1:
            return NextPage.READY
        return self.final_state

    def advance(self, page, selector):
        self.index += 1

    def to_row(self, candidate: CompanyCandidate):
        return [candidate.company_name, candidate.phone, candidate.email, candidate.source_url]


class FakeExtractor:
    """Records processed links; ``hook(index, link)`` may return an outcome."""

    def __init__(self, hook: Optional[Callable[[int, CompanyLink], Optional[EntityOutcome]]] = None):
        self.hook = hook
        self.processed: List[CompanyLink] = []
        self.surfaces = []

    def process(self, page, link):
        self.processed.append(link)
        self.surfaces.append(page)
        outcome = self.hook(len(self.processed), link) if self.hook else None
        return outcome or EntityOutcome.INSERTED


def make_links(prefix: str, count: int) -> List[CompanyLink]:
    return [CompanyLink(name=f"{prefix}{i}", url=f"https://example.com/{prefix}{i}") for i in range(1, count + 1)]
