"""
Site adapters - per-site selectors, extraction rules and ledger layout.

One pagination driver and one extractor serve both sites; everything that
differs between Mynavi and Rikunabi lives here.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple, Type
from urllib.parse import urljoin

from models import CompanyCandidate, CompanyLink, CompanyMeta, CourseCandidate, TableRow
from page_query import PageQuery

logger = logging.getLogger(__name__)

# Ledger cell markers (the downstream sheet is in Japanese)
EXTRACTION_FAILED = "取得失敗"
NOT_FOUND = "無記載"
NO_DETAIL = "詳細無し"
UNKNOWN_COMPANY = "(企業名不明)"

DEFAULT_PHONE_PATTERN = r"0\d{1,4}-\d{1,4}-\d{3,4}"
DEFAULT_EMAIL_PATTERN = r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"

WIDE_WHITESPACE = re.compile(r"[\s\u3000]+")


@dataclass
class ContactPatterns:
    """Phone/email regexes; optional labelled variants are tried first."""

    phone: Pattern[str]
    email: Pattern[str]
    phone_label: Optional[Pattern[str]] = None
    email_label: Optional[Pattern[str]] = None

    @classmethod
    def build(
        cls,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        phone_label: Optional[str] = None,
        email_label: Optional[str] = None,
    ) -> "ContactPatterns":
        return cls(
            phone=re.compile(phone or DEFAULT_PHONE_PATTERN),
            email=re.compile(email or DEFAULT_EMAIL_PATTERN),
            phone_label=re.compile(phone_label) if phone_label else None,
            email_label=re.compile(email_label) if email_label else None,
        )

    def extract(self, text: str) -> Tuple[List[str], List[str]]:
        """All matches in encounter order; a labelled match wins outright."""
        if not text:
            return [], []
        phones = self._labelled(self.phone_label, text) or [m.group(0) for m in self.phone.finditer(text)]
        emails = self._labelled(self.email_label, text) or [m.group(0) for m in self.email.finditer(text)]
        return phones, emails

    @staticmethod
    def _labelled(pattern: Optional[Pattern[str]], text: str) -> List[str]:
        if pattern is None:
            return []
        match = pattern.search(text)
        if match and match.group(1).strip():
            return [match.group(1).strip()]
        return []


class NextPage(str, Enum):
    ABSENT = "absent"
    DISABLED = "disabled"
    READY = "ready"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class SiteAdapter:
    """Capabilities the driver and extractor need from a site"""

    name = ""
    label = ""
    login_url: Optional[str] = None
    header: List[str] = []
    identity_column = 0
    delay_ms = 300
    stop_when_no_links = False
    link_selector = ""
    next_page_selector = ""

    def __init__(self, phone_pattern: Optional[str] = None, email_pattern: Optional[str] = None):
        self.patterns = self.default_patterns()
        if phone_pattern:
            self.patterns.phone = re.compile(phone_pattern)
        if email_pattern:
            self.patterns.email = re.compile(email_pattern)

    def default_patterns(self) -> ContactPatterns:
        return ContactPatterns.build()

    def extract_links(self, page: PageQuery) -> List[CompanyLink]:
        raise NotImplementedError

    def extract_attributes(self, page: PageQuery) -> CompanyMeta:
        return CompanyMeta()

    def extract_company_name(self, page: PageQuery) -> str:
        try:
            return (page.find_text("h1") or "").strip()
        except Exception:
            logger.debug("Company heading lookup failed", exc_info=True)
            return ""

    def listing_url(self, outline_url: str) -> Optional[str]:
        raise NotImplementedError

    def course_links(self, page: PageQuery) -> List[str]:
        return []

    def extract_course(self, page: PageQuery, url: str, company_name: str) -> Optional[CourseCandidate]:
        raise NotImplementedError

    def extract_contacts(self, text: str) -> Tuple[List[str], List[str]]:
        return self.patterns.extract(text)

    def next_page_control(self, page: PageQuery) -> NextPage:
        raise NotImplementedError

    def to_row(self, candidate: CompanyCandidate) -> List[str]:
        raise NotImplementedError


class MynaviAdapter(SiteAdapter):
    name = "mynavi"
    label = "マイナビ"
    login_url = "https://job.mynavi.jp/27/pc/"
    header = [
        "日付", "担当者", "温度感", "受付ブロック", "商談中", "営業目的", "採用ターゲット",
        "企業名", "電話番号", "メールアドレス", "HP", "担当者様", "備考", "リスト元",
        "企業規模", "業界", "本社地域", "年間採用人数", "上場", "属性",
    ]
    identity_column = 7
    delay_ms = 300
    link_selector = 'a[id^="corpNameLink["]'
    next_page_selector = "#lowerNextPage"

    industry_selector = "div.heading2 div.category ul li span.noLink"
    place_selector = "div.heading2 div.place .placeItem dl"
    recruit_rows_selector = (
        'li.recruitDataItem:has(div.row:has-text("過去3年間の新卒採用者数")) table tbody tr.recruitText'
    )
    course_selector = 'div.internList.courseList a[href*="displayInternship"]'
    table_selector = "table.dataTable02"
    table_timeout_ms = 10_000

    def extract_links(self, page: PageQuery) -> List[CompanyLink]:
        links = []
        for link in page.find_links(self.link_selector):
            href = (link.get("href") or "").strip()
            if not href:
                continue
            links.append(CompanyLink(name=(link.get("text") or "").strip(), url=href))
        return links

    def _industry(self, page: PageQuery) -> str:
        texts = [t.strip() for t in page.find_texts(self.industry_selector) if t and t.strip()]
        return " / ".join(texts)

    def _head_office(self, page: PageQuery) -> str:
        for heading, value in page.find_rows(self.place_selector, ["dt", "dd"]):
            if (heading or "").strip() == "本社" and value is not None:
                return value.strip()
        return ""

    def _company_size(self, page: PageQuery) -> str:
        rows = page.find_rows(self.place_selector, ["dd"])
        if not rows:
            return ""
        return (rows[-1][0] or "").strip()

    def _annual_recruitment(self, page: PageQuery) -> str:
        numbers = []
        for (cell,) in page.find_rows(self.recruit_rows_selector, ["td:nth-of-type(2) span"]):
            if cell is None:
                continue
            match = re.match(r"\s*(-?\d+)", cell.strip() or "0")
            if match:
                numbers.append(int(match.group(1)))
        if not numbers:
            return ""
        return str(math.floor(sum(numbers) / len(numbers) + 0.5))

    def extract_attributes(self, page: PageQuery) -> CompanyMeta:
        values: Dict[str, str] = {}
        lookups = {
            "industry": self._industry,
            "head_office": self._head_office,
            "company_size": self._company_size,
            "annual_recruitment": self._annual_recruitment,
        }
        for field, lookup in lookups.items():
            try:
                values[field] = lookup(page)
            except Exception as exc:
                logger.warning("Attribute lookup failed (%s): %s", field, exc)
                values[field] = ""

        return CompanyMeta(
            industry=values["industry"] or EXTRACTION_FAILED,
            head_office=values["head_office"] or EXTRACTION_FAILED,
            company_size=values["company_size"],
            annual_recruitment=values["annual_recruitment"],
        )

    def listing_url(self, outline_url: str) -> Optional[str]:
        # The internship view shares the outline's path with one segment swapped
        if "outline" not in (outline_url or ""):
            return None
        return outline_url.replace("outline", "is", 1)

    def course_links(self, page: PageQuery) -> List[str]:
        return [link["href"] for link in page.find_links(self.course_selector) if link.get("href")]

    def extract_course(self, page: PageQuery, url: str, company_name: str) -> Optional[CourseCandidate]:
        if page.url != url:
            page.goto(url)

        heading = self.extract_company_name(page) or company_name
        if not page.wait_for(self.table_selector, self.table_timeout_ms):
            logger.warning("Detail table not found, skipping: %s", url)
            return None

        rows = []
        for heading_text, value in page.find_rows(f"{self.table_selector} tr", ["td.heading", "td.sameSize"]):
            if heading_text is None or value is None or not heading_text.strip():
                continue
            rows.append(TableRow(heading=heading_text.strip(), value=value.strip()))

        phones, emails = self.extract_contacts("\n".join(row.value for row in rows))
        return CourseCandidate(
            company_name=heading,
            table_rows=rows,
            phones=phones,
            emails=emails,
            source_url=url,
        )

    def next_page_control(self, page: PageQuery) -> NextPage:
        if not page.exists(self.next_page_selector):
            return NextPage.ABSENT
        css_class = page.get_attribute(self.next_page_selector, "class") or ""
        if "disabled" in css_class:
            return NextPage.DISABLED
        return NextPage.READY

    def to_row(self, candidate: CompanyCandidate) -> List[str]:
        list_source = f"{self.label}({_utc_timestamp()})"
        return [
            "", "", "", "", "", "", "",
            candidate.company_name,
            candidate.phone,
            candidate.email,
            "", "",
            candidate.table_url,
            list_source,
            candidate.company_size,
            candidate.industry,
            candidate.head_office,
            candidate.annual_recruitment,
            "", "",
        ]


class RikunabiAdapter(SiteAdapter):
    name = "rikunabi"
    label = "リクナビ"
    base_url = "https://job.rikunabi.com"
    header = ["会社", "電話番号", "email", "取得元のURL"]
    identity_column = 0
    delay_ms = 1000
    stop_when_no_links = True
    link_selector = "a.ts-h-search-cassetteTitleMain, a.js-h-search-cassetteTitleMain"
    next_page_selector = "li.ts-h-search-pagerItem_next a.ts-h-search-pagerBtn_next"
    next_page_item_selector = "li.ts-h-search-pagerItem_next"
    contact_selector = "#company-data04"
    settle_ms = 500

    # Company top pages only; /entries/, /seminars/ and similar sub-pages are excluded
    company_url_pattern = re.compile(r"/\d{4}/company/r\d+/?$")

    def default_patterns(self) -> ContactPatterns:
        return ContactPatterns.build(
            phone_label=r"【TEL】[\s\u3000]*([0-9-]+)",
            email_label=r"【E-Mail】[\s\u3000]*([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})",
        )

    def extract_links(self, page: PageQuery) -> List[CompanyLink]:
        links = []
        for link in page.find_links(self.link_selector):
            href = (link.get("href") or "").strip()
            name = (link.get("text") or "").strip()
            if not href:
                continue
            url = href if href.startswith("http") else urljoin(self.base_url + "/", href)
            if not name or not self.company_url_pattern.search(url):
                continue
            links.append(CompanyLink(name=name, url=url.rstrip("/") or url))
        return links

    def listing_url(self, outline_url: str) -> Optional[str]:
        # Contacts sit on the company top page itself
        return outline_url or None

    def extract_course(self, page: PageQuery, url: str, company_name: str) -> Optional[CourseCandidate]:
        if page.url.rstrip("/") != url.rstrip("/"):
            page.goto(url)
        page.wait(self.settle_ms)

        text = page.find_text(self.contact_selector)
        if text is None:
            logger.warning("%s not found: %s", self.contact_selector, url)
            return None

        cleaned = WIDE_WHITESPACE.sub(" ", text.replace("\xa0", " ")).strip()
        if not cleaned:
            logger.warning("%s is empty: %s", self.contact_selector, url)
            return None

        phones, emails = self.extract_contacts(cleaned)
        if not phones and not emails:
            logger.info("Neither phone nor email found; text was: %s", cleaned[:300])
        return CourseCandidate(
            company_name=company_name,
            table_rows=[TableRow(heading=self.contact_selector, value=cleaned)],
            phones=phones,
            emails=emails,
            source_url=url,
        )

    def next_page_control(self, page: PageQuery) -> NextPage:
        if not page.exists(self.next_page_selector):
            return NextPage.ABSENT
        css_class = page.get_attribute(self.next_page_item_selector, "class")
        if css_class is None:
            return NextPage.ABSENT
        if "disabled" in css_class:
            return NextPage.DISABLED
        return NextPage.READY

    def to_row(self, candidate: CompanyCandidate) -> List[str]:
        return [candidate.company_name, candidate.phone, candidate.email, candidate.source_url]


ADAPTERS: Dict[str, Type[SiteAdapter]] = {
    MynaviAdapter.name: MynaviAdapter,
    RikunabiAdapter.name: RikunabiAdapter,
}


def get_adapter(name: str, phone_pattern: Optional[str] = None, email_pattern: Optional[str] = None) -> SiteAdapter:
    try:
        adapter_cls = ADAPTERS[(name or "").strip().lower()]
    except KeyError:
        raise ValueError(f"Unknown site '{name}'. Available: {', '.join(sorted(ADAPTERS))}") from None
    return adapter_cls(phone_pattern, email_pattern)
