"""
Company Collector - Playwright-based search results traversal
Handles browser lifecycle and drives pagination over the search results
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from playwright.sync_api import sync_playwright, Page, BrowserContext

from extractor import EntityExtractor
from models import CrawlResult
from page_query import BrowserLaunchError, PageQuery, PlaywrightPageQuery
from run_control import ControlListener, RunControl
from site_adapters import NextPage, SiteAdapter

logger = logging.getLogger(__name__)

# Common Chrome on Mac
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36"
)
PROFILE_LOCK_FILES = ("SingletonSocket", "SingletonCookie", "SingletonLock")


class PaginationDriver:
    """
    Walks search result pages one at a time.

    Pages before ``start_page`` are only advanced through. Every other page
    gets one auxiliary tab shared by all of its companies. The stop flag, the
    pause flag and the insert cap are checked at the top of each page and
    each company, never in the middle of one.
    """

    def __init__(
        self,
        adapter: SiteAdapter,
        extractor: EntityExtractor,
        control: RunControl,
        start_page: int = 1,
        max_companies: Optional[int] = None,
        delay_ms: Optional[int] = None,
    ):
        self.adapter = adapter
        self.extractor = extractor
        self.control = control
        self.start_page = max(int(start_page or 1), 1)
        self.max_companies = max_companies if max_companies and max_companies > 0 else None
        self.delay_ms = adapter.delay_ms if delay_ms is None else delay_ms

    def _cap_reached(self, result: CrawlResult) -> bool:
        return self.max_companies is not None and result.inserted >= self.max_companies

    def _should_halt(self, result: CrawlResult) -> bool:
        if self.control.is_stop_requested():
            result.stopped = True
            logger.info("Stop flag set; unwinding")
            return True
        if self._cap_reached(result):
            logger.info("Insert cap (%s) reached; %s companies added this run", self.max_companies, result.inserted)
            print(f"   🔢 Limit of {self.max_companies} new companies reached")
            return True
        return False

    def _checkpoint(self, result: CrawlResult) -> bool:
        """True when the loop may continue."""
        if self._should_halt(result):
            return False
        self.control.wait_if_paused()
        return not self._should_halt(result)

    def run(self, page: PageQuery) -> CrawlResult:
        result = CrawlResult()
        page_index = 1

        while True:
            result.last_page = page_index
            if not self._checkpoint(result):
                break

            links = self.adapter.extract_links(page)

            if page_index >= self.start_page:
                logger.info("Search page %s: %s company links", page_index, len(links))
                print(f"\n📄 Page {page_index}: {len(links)} companies")

                if not links and self.adapter.stop_when_no_links:
                    logger.info("No company links on page %s; finishing", page_index)
                    break

                self._process_page(page, links, result)
                if self._should_halt(result):
                    break
            else:
                logger.info("Search page %s is before start page %s; skipping", page_index, self.start_page)
                print(f"\n⏭️  Page {page_index}: before start page {self.start_page}, skipping")

            state = self.adapter.next_page_control(page)
            if state is not NextPage.READY:
                logger.info("Next page control %s; last page reached: %s", state.value, page_index)
                break

            page_index += 1
            page.wait(self.delay_ms)
            logger.info("Moving to search page %s", page_index)
            page.click_and_wait(self.adapter.next_page_selector)

        result.finished_at = datetime.now()
        return result

    def _process_page(self, page: PageQuery, links, result: CrawlResult) -> None:
        surface = page.new_surface()
        try:
            for index, link in enumerate(links, 1):
                if not self._checkpoint(result):
                    break
                print(f"   [{index}/{len(links)}] {link.name or link.url}")
                outcome = self.extractor.process(surface, link)
                result.record(outcome)
        finally:
            surface.close()


class CompanyCollector:
    """Owns the crawl browser and runs the pagination driver inside it"""

    def __init__(self, config, adapter: SiteAdapter):
        self.config = config
        self.adapter = adapter
        self.playwright = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.user_data_dir = config.get_user_data_dir(adapter.name)

    def _cleanup_profile_locks(self) -> None:
        """Remove lock files left behind by a crashed previous run."""
        for name in PROFILE_LOCK_FILES:
            path = self.user_data_dir / name
            if path.is_symlink() or path.exists():
                try:
                    path.unlink()
                except OSError:
                    logger.debug("Could not remove profile lock %s", path, exc_info=True)

    def start_browser(self) -> None:
        """Initialize Playwright with a persistent profile"""
        logger.info("Starting browser...")
        channel = self.config.get_browser_channel() or None
        executable_path = self.config.get_browser_executable_path() or None

        if executable_path and not Path(executable_path).exists():
            logger.warning("Browser executable not found: %s", executable_path)
            executable_path = None

        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        self._cleanup_profile_locks()

        try:
            self.playwright = sync_playwright().start()
            self.context = self.playwright.chromium.launch_persistent_context(
                user_data_dir=str(self.user_data_dir),
                headless=self.config.is_headless(),
                user_agent=USER_AGENT,
                viewport={"width": 1280, "height": 800},
                args=[
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                ],
                channel=channel,
                executable_path=executable_path,
                timeout=self.config.get_launch_timeout(),
            )
        except Exception as exc:
            raise BrowserLaunchError(f"Browser launch failed: {exc}") from exc

        # Auxiliary tabs inherit the context defaults
        self.context.set_default_timeout(self.config.get_page_timeout())
        self.context.set_default_navigation_timeout(self.config.get_navigation_timeout())
        self.page = self.context.pages[0] if self.context.pages else self.context.new_page()

        if self.config.use_stealth():
            try:
                from playwright_stealth.stealth import Stealth
                Stealth().apply_stealth_sync(self.context)
                logger.info("Playwright stealth enabled")
            except Exception as exc:
                logger.warning("Failed to enable stealth mode: %s", exc)

        logger.info("Browser started successfully (profile: %s)", self.user_data_dir)

    def stop_browser(self) -> None:
        """Clean up browser resources"""
        try:
            if self.context:
                self.context.close()
        except Exception:
            logger.debug("Browser context close failed", exc_info=True)
        try:
            if self.playwright:
                self.playwright.stop()
        except Exception:
            logger.debug("Playwright stop failed", exc_info=True)
        self.context = None
        self.page = None
        self.playwright = None
        logger.info("Browser closed")

    def wait_for_login(self) -> None:
        """Let the operator sign in on the site before crawling."""
        if not self.adapter.login_url or not self.config.is_login_wait_enabled():
            return
        self.page.goto(self.adapter.login_url, wait_until="domcontentloaded")
        print(f"\n🔐 Log in to {self.adapter.label} in the browser window if needed.")
        input("✋ Press Enter here once you are logged in...")
        logger.info("Operator confirmed login")

    def collect(self, driver: PaginationDriver, search_url: str,
                listener: Optional[ControlListener] = None) -> CrawlResult:
        """Run a full crawl; the browser is always closed on exit"""
        print("\n" + "=" * 60)
        print(f"🤖 STARTING {self.adapter.name.upper()} COLLECTION")
        print("=" * 60)

        try:
            self.start_browser()
            self.wait_for_login()
            if listener is not None:
                listener.start()

            self.page.goto(search_url, wait_until="domcontentloaded")
            logger.info("Search results opened: %s", search_url)
            result = driver.run(PlaywrightPageQuery(self.page))
        finally:
            self.stop_browser()

        print(f"\n📊 Last search page reached: {result.last_page}")
        print("=" * 60 + "\n")
        logger.info(
            "Collection complete: last_page=%s inserted=%s skipped=%s duplicates=%s failed=%s",
            result.last_page, result.inserted, result.skipped, result.duplicates, result.failed,
        )
        return result
