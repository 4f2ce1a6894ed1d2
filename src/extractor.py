"""
Entity Extractor - turns one search-result company into at most one ledger row.

Per company: check the dedupe ledger, read the overview page, move to the
detail listing, pick the most complete course, then persist through the
ledger's insert-or-skip guard. Failures stay contained to the company.
"""

import logging
from typing import List, Optional

from dedupe_store import DedupLedger
from models import CompanyCandidate, CompanyLink, CompanyMeta, CourseCandidate, EntityOutcome
from output_writer import LedgerWriter
from page_query import PageQuery
from relay import RelayClient, RelayError
from run_metrics import RunMetrics
from site_adapters import (
    EXTRACTION_FAILED,
    NO_DETAIL,
    NOT_FOUND,
    UNKNOWN_COMPANY,
    SiteAdapter,
)

logger = logging.getLogger(__name__)

FULL_SCORE = 3


def select_best_course(courses: List[CourseCandidate]) -> Optional[CourseCandidate]:
    """Highest completeness score wins; ties go to the earliest course."""
    if not courses:
        return None
    # sorted() is stable, so encounter order breaks ties
    return sorted(courses, key=lambda course: course.score, reverse=True)[0]


class EntityExtractor:
    """Runs the per-company procedure on a reusable browsing surface"""

    def __init__(
        self,
        adapter: SiteAdapter,
        ledger: DedupLedger,
        writer: LedgerWriter,
        relay: Optional[RelayClient] = None,
        metrics: Optional[RunMetrics] = None,
        delay_ms: Optional[int] = None,
    ):
        self.adapter = adapter
        self.ledger = ledger
        self.writer = writer
        self.relay = relay
        self.metrics = metrics
        self.delay_ms = adapter.delay_ms if delay_ms is None else delay_ms

    def _inc(self, key: str) -> None:
        if self.metrics is not None:
            self.metrics.inc(key)

    def process(self, page: PageQuery, link: CompanyLink) -> EntityOutcome:
        """Process one company; never raises."""
        try:
            return self._process(page, link)
        except Exception as exc:
            logger.exception("Company processing failed: %s (%s)", link, exc)
            print(f"   ✗ Failed: {link.name or link.url}: {exc}")
            self._inc("companies_failed")
            return EntityOutcome.FAILED

    def _process(self, page: PageQuery, link: CompanyLink) -> EntityOutcome:
        raw_name = link.name
        if raw_name and self.ledger.exists(raw_name):
            logger.info("Already in ledger, skipping: %s", raw_name)
            self._inc("companies_skipped")
            return EntityOutcome.SKIPPED

        logger.info("Processing company: %s", link)
        page.wait(self.delay_ms)
        page.goto(link.url)

        meta = self.adapter.extract_attributes(page)
        company_name = raw_name or self.adapter.extract_company_name(page)

        listing_url = self.adapter.listing_url(page.url)
        if not listing_url:
            logger.warning("Could not derive a detail listing URL: %s", link.url)
            candidate = self._build(company_name, meta, link, None, NO_DETAIL, link.url)
            return self._persist(candidate, "no detail listing")

        if page.url != listing_url:
            page.wait(self.delay_ms)
            page.goto(listing_url)

        course_urls = self.adapter.course_links(page)
        courses: List[CourseCandidate] = []

        if not course_urls:
            logger.info("No course links; trying the listing page itself: %s", listing_url)
            try:
                course = self.adapter.extract_course(page, listing_url, company_name)
            except Exception as exc:
                logger.warning("Listing page has no readable detail table: %s (%s)", listing_url, exc)
                course = None
            if course is None:
                candidate = self._build(company_name, meta, link, None, NO_DETAIL, listing_url)
                return self._persist(candidate, "no courses")
            courses.append(course)
        else:
            logger.info("Courses found: %s", len(course_urls))
            courses = self._collect_courses(page, course_urls, company_name)

        best = select_best_course(courses)
        if best is None:
            candidate = self._build(company_name, meta, link, None, EXTRACTION_FAILED, listing_url)
            return self._persist(candidate, "no detail table")

        candidate = self._build(company_name, meta, link, best, NOT_FOUND, best.source_url)
        return self._persist(candidate)

    def _collect_courses(self, page: PageQuery, course_urls: List[str], company_name: str) -> List[CourseCandidate]:
        courses: List[CourseCandidate] = []
        for course_url in course_urls:
            page.wait(self.delay_ms)
            course = self.adapter.extract_course(page, course_url, company_name)
            if course is None:
                continue
            courses.append(course)
            if course.score == FULL_SCORE:
                # Remaining courses are not fetched once one has both contacts
                logger.info("Course with phone and email found; skipping remaining courses")
                break
        return courses

    def _build(
        self,
        company_name: str,
        meta: CompanyMeta,
        link: CompanyLink,
        course: Optional[CourseCandidate],
        missing_marker: str,
        table_url: str,
    ) -> CompanyCandidate:
        if course is not None:
            phone = course.phones[0] if course.phones else missing_marker
            email = course.emails[0] if course.emails else missing_marker
            snapshot = course.table_snapshot()
        else:
            phone = email = missing_marker
            snapshot = "[]"

        return CompanyCandidate(
            company_name=company_name or UNKNOWN_COMPANY,
            phone=phone,
            email=email,
            industry=meta.industry,
            head_office=meta.head_office,
            company_size=meta.company_size,
            annual_recruitment=meta.annual_recruitment,
            source_url=link.url,
            table_url=table_url or "",
            table_snapshot=snapshot,
        )

    def _persist(self, candidate: CompanyCandidate, reason: Optional[str] = None) -> EntityOutcome:
        label = f" ({reason})" if reason else ""
        identity = "" if candidate.company_name == UNKNOWN_COMPANY else candidate.company_name
        if self.ledger.check_and_insert(identity):
            logger.info("Already processed%s, skipping: %s", label, candidate.company_name)
            self._inc("companies_duplicate")
            return EntityOutcome.DUPLICATE

        row = self.adapter.to_row(candidate)
        try:
            self.writer.append(row)
        except OSError:
            # Identity must not outlive a row that was never written
            self.ledger.discard(identity)
            raise
        self._inc("companies_inserted")
        logger.info("Saved%s: %s", label, candidate)
        logger.debug("Detail table for %s: %s", candidate.company_name, candidate.table_snapshot)
        print(f"   ✓ Saved{label}: {candidate}")

        if self.relay is not None:
            self._relay(row)
        return EntityOutcome.INSERTED

    def _relay(self, row: List[str]) -> None:
        try:
            response = self.relay.post_row(row)
            logger.info("Relay response: %s", response)
            self._inc("relay_ok")
        except RelayError as exc:
            logger.error("Relay upload failed (ledger row already saved): %s", exc)
            self._inc("relay_failed")
        except Exception as exc:
            logger.exception("Relay upload crashed (ledger row already saved): %s", exc)
            self._inc("relay_failed")
