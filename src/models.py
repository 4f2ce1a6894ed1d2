"""
Data models for the contact list collector
Defines structure for search links, course/company candidates and crawl results
"""

from enum import Enum
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field


class CompanyLink(BaseModel):
    """A company entry discovered on a search results page"""

    name: str = ""
    url: str

    def __str__(self) -> str:
        return f"{self.name or '(no name)'} <{self.url}>"


class CompanyMeta(BaseModel):
    """Auxiliary attributes read from a company overview page"""

    industry: str = ""
    head_office: str = ""
    annual_recruitment: str = ""
    company_size: str = ""


class TableRow(BaseModel):
    """One heading/value row of a detail table"""

    heading: str
    value: str = ""


class CourseCandidate(BaseModel):
    """Contacts extracted from one detail sub-page of a company"""

    company_name: str = ""
    table_rows: List[TableRow] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    emails: List[str] = Field(default_factory=list)
    source_url: str = ""

    @property
    def score(self) -> int:
        """Completeness: 3 = phone and email, 2 = phone, 1 = email, 0 = neither"""
        has_phone = bool(self.phones)
        has_email = bool(self.emails)
        if has_phone and has_email:
            return 3
        if has_phone:
            return 2
        if has_email:
            return 1
        return 0

    def table_snapshot(self) -> str:
        return "[" + ",".join(row.model_dump_json() for row in self.table_rows) + "]"


class CompanyCandidate(BaseModel):
    """A company record ready to be checked against the ledger and persisted"""

    company_name: str
    phone: str
    email: str
    industry: str = ""
    head_office: str = ""
    company_size: str = ""
    annual_recruitment: str = ""
    source_url: str = ""
    table_url: str = ""
    table_snapshot: str = "[]"
    collected_at: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        return f"{self.company_name} (phone={self.phone}, email={self.email})"


class EntityOutcome(str, Enum):
    """Result of processing one company from a search page"""

    INSERTED = "inserted"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class CrawlResult(BaseModel):
    """Summary of one pagination run"""

    last_page: int = 0
    inserted: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    stopped: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def record(self, outcome: EntityOutcome) -> None:
        if outcome == EntityOutcome.INSERTED:
            self.inserted += 1
        elif outcome == EntityOutcome.SKIPPED:
            self.skipped += 1
        elif outcome == EntityOutcome.DUPLICATE:
            self.duplicates += 1
        elif outcome == EntityOutcome.FAILED:
            self.failed += 1
