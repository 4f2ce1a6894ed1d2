"""
Remote relay client - posts each new ledger row to a spreadsheet web app.

The receiver (a Google Apps Script ``doPost``) appends ``row`` verbatim to its
sheet and answers ``OK`` in plain text. Relay failures never affect the local
ledger; callers log and move on.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10
AUTH_HEADER = "X-Auth-Token"


class RelayError(RuntimeError):
    pass


class RelayClient:
    def __init__(self, url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.url = (url or "").strip()
        self.token = (token or "").strip() or None
        self.timeout = float(timeout or DEFAULT_TIMEOUT_SECONDS)
        if not self.url:
            raise ValueError("relay url is required")

    def post_row(self, row: List[str]) -> str:
        """Send one row; returns the receiver's response text."""
        payload = {"row": list(row), "token": self.token or ""}
        headers = {"Content-Type": "application/json; charset=utf-8"}
        if self.token:
            headers[AUTH_HEADER] = self.token

        try:
            resp = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise RelayError(f"relay upload timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise RelayError(f"relay request error: {exc}") from exc

        text = resp.text or ""
        if not resp.ok:
            raise RelayError(f"relay HTTP {resp.status_code} {resp.reason}: {text[:200]}")
        return text or f"HTTP {resp.status_code}"
