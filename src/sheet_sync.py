"""
Spreadsheet sync - download the shared sheet as CSV with a reusable session.

The saved session (Playwright storage state: cookies + per-origin local
storage) is replayed headlessly first. If the sheet rejects it, a real Chrome
is started with remote debugging so the operator can sign in by hand; the
fresh state is snapshotted, saved wholesale and the download retried once.
A session is only ever judged by the real export request it gates.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests
from playwright.sync_api import sync_playwright

from config_loader import ConfigValidationError
from page_query import BrowserLaunchError

logger = logging.getLogger(__name__)

SessionState = Dict[str, Any]

SHEET_ID_PATTERN = re.compile(r"/spreadsheets/d/([^/]+)")
CDP_READY_TIMEOUT_SECONDS = 15
CDP_POLL_SECONDS = 0.5
DOWNLOAD_TIMEOUT_MS = 60_000

CHROME_CANDIDATES = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
]
CHROME_COMMANDS = ["google-chrome", "google-chrome-stable", "chromium", "chromium-browser"]


class SpreadsheetUrlError(ConfigValidationError):
    """Raised when the spreadsheet URL has no recognizable sheet id."""


class SessionRejected(RuntimeError):
    """Raised when the protected export request does not succeed."""


def build_csv_export_url(spreadsheet_url: str) -> str:
    match = SHEET_ID_PATTERN.search(spreadsheet_url or "")
    if not match:
        raise SpreadsheetUrlError(
            f"Unexpected spreadsheet URL format: {spreadsheet_url}\n"
            "Example: https://docs.google.com/spreadsheets/d/<sheet-id>/edit"
        )
    return f"https://docs.google.com/spreadsheets/d/{match.group(1)}/export?format=csv"


def load_session(path: Path) -> Optional[SessionState]:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Saved session unreadable, ignoring: %s", exc)
        return None


def save_session(path: Path, state: SessionState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(state, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Session saved to %s", path)


def detect_chrome_executable() -> str:
    env_path = os.environ.get("CHROME_PATH")
    if env_path and Path(env_path).exists():
        return env_path

    for candidate in CHROME_CANDIDATES:
        if Path(candidate).exists():
            return candidate
    for command in CHROME_COMMANDS:
        found = shutil.which(command)
        if found:
            return found

    raise BrowserLaunchError(
        "Chrome executable not found. Install Google Chrome or set CHROME_PATH."
    )


def wait_for_cdp_ready(url: str, timeout_seconds: float = CDP_READY_TIMEOUT_SECONDS) -> None:
    """Poll the DevTools version endpoint until it answers 2xx."""
    deadline = time.monotonic() + timeout_seconds
    version_url = f"{url.rstrip('/')}/json/version"
    while True:
        try:
            resp = requests.get(version_url, timeout=2)
            if resp.ok:
                return
        except requests.RequestException:
            pass
        if time.monotonic() > deadline:
            raise BrowserLaunchError(f"Chrome remote debugging endpoint not reachable: {url}")
        time.sleep(CDP_POLL_SECONDS)


def _wait_for_enter() -> None:
    input("\n✋ When the sheet is visible and you are signed in, press Enter here...")


class SheetSession:
    """Replay-then-capture access to one spreadsheet's CSV export"""

    def __init__(
        self,
        spreadsheet_url: str,
        session_file: Path,
        user_data_dir: Path,
        debug_host: str = "127.0.0.1",
        debug_port: int = 9223,
        wait_for_operator: Optional[Callable[[], None]] = None,
    ):
        self.spreadsheet_url = spreadsheet_url
        self.csv_url = build_csv_export_url(spreadsheet_url)
        self.session_file = Path(session_file)
        self.user_data_dir = Path(user_data_dir)
        self.debug_host = debug_host
        self.debug_port = int(debug_port)
        self.wait_for_operator = wait_for_operator or _wait_for_enter
        self.chrome_process: Optional[subprocess.Popen] = None
        self.capture_count = 0

    @property
    def cdp_url(self) -> str:
        return f"http://{self.debug_host}:{self.debug_port}"

    def download_with_session(self, state: SessionState) -> str:
        """Fetch the CSV export in a headless context built from ``state``."""
        with sync_playwright() as p:
            browser = p.chromium.launch(headless=True)
            try:
                context = browser.new_context(storage_state=state)
                response = context.request.get(
                    self.csv_url,
                    timeout=DOWNLOAD_TIMEOUT_MS,
                    headers={"Accept": "text/csv,application/csv;q=0.9,*/*;q=0.8"},
                )
                if response.status != 200:
                    preview = response.text()[:500]
                    raise SessionRejected(
                        f"CSV export failed: {response.status} {response.status_text}\n{preview}"
                    )
                return response.text()
            finally:
                browser.close()

    def launch_chrome(self) -> str:
        if self.chrome_process is not None and self.chrome_process.poll() is None:
            return self.cdp_url

        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        chrome_path = detect_chrome_executable()
        args = [
            chrome_path,
            f"--remote-debugging-port={self.debug_port}",
            f"--user-data-dir={self.user_data_dir}",
            "--no-first-run",
            "--no-default-browser-check",
        ]
        logger.info("Launching Chrome for sign-in: %s", chrome_path)
        try:
            self.chrome_process = subprocess.Popen(
                args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as exc:
            raise BrowserLaunchError(f"Failed to start Chrome: {exc}") from exc

        wait_for_cdp_ready(self.cdp_url)
        return self.cdp_url

    def terminate_chrome(self) -> None:
        if self.chrome_process is not None and self.chrome_process.poll() is None:
            self.chrome_process.terminate()
            try:
                self.chrome_process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                self.chrome_process.kill()
        self.chrome_process = None

    def capture_interactive(self) -> SessionState:
        """Let the operator sign in, then snapshot and persist the session."""
        self.capture_count += 1
        cdp_url = self.launch_chrome()
        try:
            with sync_playwright() as p:
                browser = p.chromium.connect_over_cdp(cdp_url)
                try:
                    context = browser.contexts[0] if browser.contexts else browser.new_context()
                    page = context.pages[0] if context.pages else context.new_page()
                    page.goto(self.spreadsheet_url, wait_until="domcontentloaded")

                    print("\n🔐 Sign in to Google in the opened Chrome window and make sure the sheet opens.")
                    self.wait_for_operator()

                    state = context.storage_state()
                    save_session(self.session_file, state)
                    return state
                finally:
                    for ctx in browser.contexts:
                        try:
                            ctx.close()
                        except Exception:
                            logger.debug("Context close failed", exc_info=True)
                    browser.close()
        finally:
            self.terminate_chrome()

    def download(self) -> str:
        """Replay the saved session; on rejection capture once and retry once."""
        state = load_session(self.session_file)
        if state is not None:
            try:
                return self.download_with_session(state)
            except Exception as exc:
                logger.warning("Saved session could not fetch the sheet; signing in again: %s", exc)
        else:
            logger.info("No saved session at %s; interactive sign-in required", self.session_file)

        fresh_state = self.capture_interactive()
        return self.download_with_session(fresh_state)


def sync_ledger_from_sheet(sheet: SheetSession, ledger_path: Path) -> Path:
    """Overwrite the local ledger with the sheet's current CSV export."""
    csv_text = sheet.download()
    ledger_path.parent.mkdir(parents=True, exist_ok=True)
    ledger_path.write_text(csv_text, encoding="utf-8")
    logger.info("Spreadsheet CSV saved to %s", ledger_path)
    print(f"📥 Spreadsheet downloaded to {ledger_path}")
    return ledger_path
