"""
Run metrics - per-run counters written next to the ledger as JSON.

Counter keys used by the extractor: companies_inserted, companies_skipped,
companies_duplicate, companies_failed, relay_ok, relay_failed.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from models import CrawlResult

DEFAULT_METRICS_TEMPLATE = "output/run_metrics_{timestamp}.json"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunMetrics:
    """Partial runs (operator stop, failed companies) are still dumped."""

    site: str
    started_at_iso: str = field(default_factory=_utc_now_iso)
    started_at_monotonic: float = field(default_factory=time.monotonic)
    ended_at_iso: Optional[str] = None
    duration_seconds: Optional[float] = None
    counters: Dict[str, int] = field(default_factory=dict)
    crawl: Optional[CrawlResult] = None

    def inc(self, key: str, amount: int = 1) -> None:
        if key:
            self.counters[key] = self.counters.get(key, 0) + int(amount)

    def get(self, key: str) -> int:
        return self.counters.get(key, 0)

    def attach_result(self, result: CrawlResult) -> None:
        self.crawl = result

    def finish(self) -> None:
        if self.ended_at_iso is None:
            self.ended_at_iso = _utc_now_iso()
            self.duration_seconds = max(time.monotonic() - self.started_at_monotonic, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        self.finish()
        payload: Dict[str, Any] = {
            "site": self.site,
            "started_at": self.started_at_iso,
            "ended_at": self.ended_at_iso,
            "duration_seconds": round(self.duration_seconds or 0.0, 3),
            "counters": dict(self.counters),
        }
        if self.crawl is not None:
            payload["crawl"] = self.crawl.model_dump(mode="json", exclude={"started_at", "finished_at"})
        return payload

    def write_json(self, template: str = "") -> Path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = Path((template or DEFAULT_METRICS_TEMPLATE).replace("{timestamp}", timestamp))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
        return path
