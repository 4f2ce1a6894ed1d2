"""
Tests for the per-company procedure: skip, course selection, markers, persistence.
"""

import logging
from unittest.mock import Mock, patch

import pytest

from collector import PaginationDriver
from dedupe_store import DedupLedger
from extractor import EntityExtractor, select_best_course
from models import CompanyLink, CourseCandidate, EntityOutcome
from output_writer import LedgerWriter
from relay import RelayClient, RelayError
from run_control import RunControl
from run_metrics import RunMetrics
from site_adapters import EXTRACTION_FAILED, NO_DETAIL, NOT_FOUND, UNKNOWN_COMPANY, MynaviAdapter, RikunabiAdapter

from conftest import FakePage, ScriptedSearchAdapter

MYNAVI = MynaviAdapter()
OUTLINE = "https://job.mynavi.jp/27/pc/search/corp1/outline.html"
LISTING = "https://job.mynavi.jp/27/pc/search/corp1/is.html"
TABLE_ROWS = ("table.dataTable02 tr", ("td.heading", "td.sameSize"))


def course_url(n):
    return f"https://job.mynavi.jp/27/pc/corpinfo/displayInternship/index?optNo={n}"


def course_page(contact_text):
    return {
        "present": {"table.dataTable02"},
        "rows": {TABLE_ROWS: [["プログラム名", "1day"], ["問い合わせ先", contact_text]]},
    }


def mynavi_site(course_texts):
    site = {
        OUTLINE: {
            "texts": {MYNAVI.industry_selector: ["ソフトウェア", "情報処理"]},
            "rows": {
                (MYNAVI.place_selector, ("dt", "dd")): [["本社", "東京都"], ["事業所", "大阪府"]],
                (MYNAVI.place_selector, ("dd",)): [["東京都"], ["大阪府"], ["300名"]],
                (MYNAVI.recruit_rows_selector, ("td:nth-of-type(2) span",)): [["10名"], ["11名"], ["13名"]],
            },
        },
        LISTING: {
            "links": {
                MYNAVI.course_selector: [
                    {"text": f"course {n}", "href": course_url(n)} for n in range(1, len(course_texts) + 1)
                ]
            }
        },
    }
    for n, text in enumerate(course_texts, 1):
        site[course_url(n)] = course_page(text)
    return site


@pytest.fixture
def ledger_writer(tmp_path):
    writer = LedgerWriter(tmp_path / "ledger.csv", MYNAVI.header)
    writer.ensure_header()
    return writer


def make_extractor(adapter, writer, ledger=None, relay=None, metrics=None):
    ledger = ledger if ledger is not None else DedupLedger(adapter.identity_column)
    return EntityExtractor(adapter, ledger, writer,
                           relay=relay, metrics=metrics, delay_ms=0)


class TestSelectBestCourse:

    def test_highest_score_wins_ties_go_to_first(self):
        a = CourseCandidate(phones=["03-1111-2222"], source_url="a")
        b = CourseCandidate(phones=["03-3333-4444"], source_url="b")
        c = CourseCandidate(emails=["x@example.com"], source_url="c")
        assert select_best_course([c, a, b]).source_url == "a"

    def test_empty_list(self):
        assert select_best_course([]) is None


class TestMynaviExtraction:

    def test_early_exit_on_full_score_course(self, ledger_writer):
        texts = [
            "説明会のみ",
            "TEL 03-1111-2222",
            "TEL 03-5555-6666 / recruit@example.co.jp",
            "TEL 06-7777-8888 / other@example.co.jp",
        ]
        page = FakePage(mynavi_site(texts))
        extractor = make_extractor(MYNAVI, ledger_writer)

        outcome = extractor.process(page, CompanyLink(name="株式会社テスト", url=OUTLINE))

        assert outcome == EntityOutcome.INSERTED
        assert course_url(4) not in page.visits
        row = ledger_writer.read_rows()[-1]
        assert row[7] == "株式会社テスト"
        assert row[8] == "03-5555-6666"
        assert row[9] == "recruit@example.co.jp"
        assert row[12] == course_url(3)
        assert row[13].startswith("マイナビ(")
        assert row[14:18] == ["300名", "ソフトウェア / 情報処理", "東京都", "11"]

    def test_picks_highest_partial_course(self, ledger_writer):
        texts = ["なし", "only@example.com", "TEL 03-1111-2222"]
        page = FakePage(mynavi_site(texts))
        make_extractor(MYNAVI, ledger_writer).process(page, CompanyLink(name="Acme", url=OUTLINE))

        row = ledger_writer.read_rows()[-1]
        assert row[8] == "03-1111-2222"
        assert row[9] == NOT_FOUND
        assert row[12] == course_url(3)

    def test_known_company_is_skipped_without_navigation(self, ledger_writer):
        ledger = DedupLedger(MYNAVI.identity_column)
        ledger.check_and_insert("Acme")
        page = FakePage(mynavi_site(["TEL 03-1111-2222"]))
        metrics = RunMetrics(site="mynavi")

        outcome = make_extractor(MYNAVI, ledger_writer, ledger, metrics=metrics).process(
            page, CompanyLink(name="PICK UP Acme", url=OUTLINE)
        )

        assert outcome == EntityOutcome.SKIPPED
        assert page.visits == []
        assert metrics.get("companies_skipped") == 1
        assert len(ledger_writer.read_rows()) == 1

    def test_no_table_on_any_course_persists_failure_marker(self, ledger_writer):
        site = mynavi_site(["x", "y"])
        site[course_url(1)] = {}
        site[course_url(2)] = {}
        make_extractor(MYNAVI, ledger_writer).process(FakePage(site), CompanyLink(name="Acme", url=OUTLINE))

        row = ledger_writer.read_rows()[-1]
        assert row[8] == EXTRACTION_FAILED
        assert row[9] == EXTRACTION_FAILED
        assert row[12] == LISTING

    def test_no_courses_and_no_table_persists_no_detail(self, ledger_writer):
        site = mynavi_site([])
        make_extractor(MYNAVI, ledger_writer).process(FakePage(site), CompanyLink(name="Acme", url=OUTLINE))

        row = ledger_writer.read_rows()[-1]
        assert (row[8], row[9]) == (NO_DETAIL, NO_DETAIL)

    def test_listing_page_error_still_persists_no_detail(self, ledger_writer):
        class NavigatingAwayPage(FakePage):
            def wait_for(self, selector, timeout):
                raise RuntimeError("Execution context was destroyed")

        metrics = RunMetrics(site="mynavi")
        outcome = make_extractor(MYNAVI, ledger_writer, metrics=metrics).process(
            NavigatingAwayPage(mynavi_site([])), CompanyLink(name="Acme", url=OUTLINE)
        )

        assert outcome == EntityOutcome.INSERTED
        row = ledger_writer.read_rows()[-1]
        assert (row[7], row[8], row[9], row[12]) == ("Acme", NO_DETAIL, NO_DETAIL, LISTING)
        assert metrics.get("companies_failed") == 0

    def test_detail_table_is_logged_at_debug(self, ledger_writer, caplog):
        caplog.set_level(logging.DEBUG, logger="extractor")
        make_extractor(MYNAVI, ledger_writer).process(
            FakePage(mynavi_site(["TEL 03-1111-2222"])), CompanyLink(name="Acme", url=OUTLINE)
        )

        debug = [r.getMessage() for r in caplog.records if r.levelno == logging.DEBUG]
        assert any("Detail table for Acme" in m and "問い合わせ先" in m for m in debug)

    def test_outline_url_without_listing_persists_no_detail(self, ledger_writer):
        url = "https://job.mynavi.jp/27/pc/search/corp1/top.html"
        make_extractor(MYNAVI, ledger_writer).process(FakePage({url: {}}), CompanyLink(name="Acme", url=url))

        row = ledger_writer.read_rows()[-1]
        assert (row[8], row[9], row[12]) == (NO_DETAIL, NO_DETAIL, url)

    def test_missing_name_falls_back_to_heading(self, ledger_writer):
        site = mynavi_site(["TEL 03-1111-2222"])
        site[OUTLINE]["text"] = {"h1": "見出し株式会社"}
        make_extractor(MYNAVI, ledger_writer).process(FakePage(site), CompanyLink(name="", url=OUTLINE))
        assert ledger_writer.read_rows()[-1][7] == "見出し株式会社"

    def test_nameless_company_is_written_without_identity(self, ledger_writer):
        ledger = DedupLedger(MYNAVI.identity_column)
        site = mynavi_site(["TEL 03-1111-2222"])
        extractor = make_extractor(MYNAVI, ledger_writer, ledger)

        extractor.process(FakePage(site), CompanyLink(name="", url=OUTLINE))
        extractor.process(FakePage(site), CompanyLink(name="", url=OUTLINE))

        names = [r[7] for r in ledger_writer.read_rows()[1:]]
        assert names == [UNKNOWN_COMPANY, UNKNOWN_COMPANY]
        assert len(ledger) == 0

    def test_failure_is_contained_and_counted(self, ledger_writer):
        site = {OUTLINE: RuntimeError("navigation failed")}
        metrics = RunMetrics(site="mynavi")
        outcome = make_extractor(MYNAVI, ledger_writer, metrics=metrics).process(
            FakePage(site), CompanyLink(name="Acme", url=OUTLINE)
        )

        assert outcome == EntityOutcome.FAILED
        assert metrics.get("companies_failed") == 1
        assert len(ledger_writer.read_rows()) == 1


class TestPersistence:

    def _rikunabi_site(self, names):
        site = {}
        for i, _ in enumerate(names, 1):
            site[f"https://job.rikunabi.com/2026/company/r{i}"] = {
                "text": {"#company-data04": f"【TEL】03-000{i}-1234\n【E-Mail】c{i}@example.com"}
            }
        return site

    def test_distinct_inserts_are_written_in_order(self, tmp_path):
        adapter = RikunabiAdapter()
        writer = LedgerWriter(tmp_path / "r.csv", adapter.header)
        writer.ensure_header()
        names = ["Alpha", "Beta", "Gamma", "Delta"]
        page = FakePage(self._rikunabi_site(names))
        extractor = make_extractor(adapter, writer)

        outcomes = [
            extractor.process(page, CompanyLink(name=n, url=f"https://job.rikunabi.com/2026/company/r{i}"))
            for i, n in enumerate(names, 1)
        ]

        assert outcomes == [EntityOutcome.INSERTED] * 4
        rows = writer.read_rows()[1:]
        assert [r[0] for r in rows] == names
        assert rows[0] == ["Alpha", "03-0001-1234", "c1@example.com", "https://job.rikunabi.com/2026/company/r1"]

    def test_heading_name_already_in_ledger_is_duplicate(self, ledger_writer):
        ledger = DedupLedger(MYNAVI.identity_column)
        ledger.check_and_insert("見出し株式会社")
        site = mynavi_site(["TEL 03-1111-2222"])
        site[OUTLINE]["text"] = {"h1": "見出し株式会社"}

        outcome = make_extractor(MYNAVI, ledger_writer, ledger).process(
            FakePage(site), CompanyLink(name="", url=OUTLINE)
        )

        assert outcome == EntityOutcome.DUPLICATE
        assert len(ledger_writer.read_rows()) == 1

    def test_relay_receives_written_row(self, ledger_writer):
        relay = Mock()
        relay.post_row.return_value = "OK"
        metrics = RunMetrics(site="mynavi")
        make_extractor(MYNAVI, ledger_writer, relay=relay, metrics=metrics).process(
            FakePage(mynavi_site(["TEL 03-1111-2222"])), CompanyLink(name="Acme", url=OUTLINE)
        )

        relay.post_row.assert_called_once()
        assert relay.post_row.call_args[0][0] == ledger_writer.read_rows()[-1]
        assert metrics.get("relay_ok") == 1

    def test_relay_failure_keeps_ledger_row(self, ledger_writer):
        relay = Mock()
        relay.post_row.side_effect = RelayError("HTTP 500")
        metrics = RunMetrics(site="mynavi")

        outcome = make_extractor(MYNAVI, ledger_writer, relay=relay, metrics=metrics).process(
            FakePage(mynavi_site(["TEL 03-1111-2222"])), CompanyLink(name="Acme", url=OUTLINE)
        )

        assert outcome == EntityOutcome.INSERTED
        assert ledger_writer.read_rows()[-1][7] == "Acme"
        assert metrics.get("relay_failed") == 1

    def test_relay_crash_keeps_insert_and_cap(self, tmp_path):
        adapter = RikunabiAdapter()
        writer = LedgerWriter(tmp_path / "r.csv", adapter.header)
        writer.ensure_header()
        names = ["Alpha", "Beta", "Gamma"]
        site = self._rikunabi_site(names)
        links = [
            CompanyLink(name=n, url=f"https://job.rikunabi.com/2026/company/r{i}") for i, n in enumerate(names, 1)
        ]
        search = ScriptedSearchAdapter([links])
        page = FakePage(site, url="https://job.rikunabi.com/2026/s/", on_click=search.advance)
        metrics = RunMetrics(site="rikunabi")
        extractor = make_extractor(adapter, writer, relay=RelayClient("https://relay.example.com", timeout=0.5),
                                   metrics=metrics)

        with patch("relay.requests.post", side_effect=ValueError("unexpected relay error")):
            result = PaginationDriver(search, extractor, RunControl(), max_companies=2).run(page)

        assert result.inserted == 2
        assert result.failed == 0
        assert [r[0] for r in writer.read_rows()[1:]] == ["Alpha", "Beta"]
        assert metrics.get("relay_failed") == 2
        assert metrics.get("companies_failed") == 0

    def test_failed_write_releases_identity(self, ledger_writer):
        ledger = DedupLedger(MYNAVI.identity_column)
        broken = Mock()
        broken.append.side_effect = OSError("No space left on device")
        metrics = RunMetrics(site="mynavi")
        site = mynavi_site(["TEL 03-1111-2222"])

        outcome = make_extractor(MYNAVI, broken, ledger, metrics=metrics).process(
            FakePage(site), CompanyLink(name="Acme", url=OUTLINE)
        )

        assert outcome == EntityOutcome.FAILED
        assert not ledger.exists("Acme")
        assert metrics.get("companies_failed") == 1
        assert metrics.get("companies_inserted") == 0

        retried = make_extractor(MYNAVI, ledger_writer, ledger).process(
            FakePage(site), CompanyLink(name="Acme", url=OUTLINE)
        )
        assert retried == EntityOutcome.INSERTED
        assert ledger_writer.read_rows()[-1][7] == "Acme"
