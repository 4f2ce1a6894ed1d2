"""
Dedupe Store - Cross-run company de-duplication seeded from the CSV ledger
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Iterable, List, Sequence, Union

from output_writer import parse_csv

logger = logging.getLogger(__name__)

# Search results prefix featured companies with this badge text
PROMO_MARKER = re.compile(r"\s*PICK UP\s*", re.IGNORECASE)
LINE_BREAKS = re.compile(r"[\n\r\t]+")
WHITESPACE = re.compile(r"\s+")


def normalize_company_name(name: str) -> str:
    """Canonical identity key for a raw company name."""
    if not name:
        return ""
    value = name.strip()
    value = PROMO_MARKER.sub("", value)
    value = LINE_BREAKS.sub(" ", value)
    value = WHITESPACE.sub(" ", value)
    return value.strip()


class DedupLedger:
    """
    In-memory set of normalized company identities.

    Seeded from the existing ledger file at startup and grown by the live
    crawl. Entries are never removed; the CSV ledger itself is the persisted
    form and is re-read on the next run.
    """

    def __init__(self, identity_column: int = 0) -> None:
        self.identity_column = identity_column
        self.identities: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.identities)

    def __contains__(self, raw_name: str) -> bool:
        return self.exists(raw_name)

    def seed(self, existing: Union[str, Iterable[Sequence[str]]]) -> set[str]:
        """
        Add identities from a full ledger dump (header + data rows).

        ``existing`` is either the raw CSV text or already tokenized rows.
        Short rows and blank identity fields are skipped.
        """
        rows: List[Sequence[str]] = parse_csv(existing) if isinstance(existing, str) else list(existing)
        added: set[str] = set()
        for fields in rows[1:]:
            if len(fields) <= self.identity_column:
                continue
            normalized = normalize_company_name(fields[self.identity_column] or "")
            if not normalized:
                continue
            added.add(normalized)

        with self._lock:
            self.identities.update(added)
        logger.info("Seeded %s identities from ledger (%s data rows)", len(added), max(len(rows) - 1, 0))
        return added

    def seed_from_file(self, path: Path) -> set[str]:
        if not path.exists():
            return set()
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read ledger for dedupe seeding: %s", exc)
            return set()
        return self.seed(content)

    def exists(self, raw_name: str) -> bool:
        """Check without inserting; used before expensive detail navigation."""
        normalized = normalize_company_name(raw_name)
        if not normalized:
            return False
        return normalized in self.identities

    def check_and_insert(self, raw_name: str) -> bool:
        """Return True for a duplicate, otherwise insert and return False."""
        normalized = normalize_company_name(raw_name)
        if not normalized:
            return False
        with self._lock:
            if normalized in self.identities:
                return True
            self.identities.add(normalized)
            return False

    def discard(self, raw_name: str) -> None:
        """Drop an identity whose ledger row never made it to disk."""
        normalized = normalize_company_name(raw_name)
        if not normalized:
            return
        with self._lock:
            self.identities.discard(normalized)
