"""
Output Writer - CSV ledger tokenizer and append-only writer
"""

import csv
import io
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class _TokenState(Enum):
    FIELD = "field"
    QUOTED = "quoted"
    LINE_END = "line_end"


def _emit_row(rows: List[List[str]], row: List[str]) -> None:
    # Blank lines (every field empty or whitespace) are dropped
    if any(field.strip() for field in row):
        rows.append(row)


def parse_csv(content: str, delimiter: str = ",") -> List[List[str]]:
    """
    Tokenize a whole CSV document into rows of fields.

    A small state machine:

    * FIELD: plain characters accumulate; ``"`` enters QUOTED, the delimiter
      closes the field, CR or LF closes the field and the row and enters
      LINE_END.
    * QUOTED: everything accumulates, including delimiters and line breaks;
      ``""`` yields one literal quote, a lone ``"`` returns to FIELD.
    * LINE_END: swallows the LF of a CRLF pair, then behaves as FIELD.
    """
    rows: List[List[str]] = []
    row: List[str] = []
    field: List[str] = []
    state = _TokenState.FIELD
    i = 0
    length = len(content)

    while i < length:
        char = content[i]

        if state is _TokenState.QUOTED:
            if char == '"':
                if i + 1 < length and content[i + 1] == '"':
                    field.append('"')
                    i += 2
                    continue
                state = _TokenState.FIELD
            else:
                field.append(char)
            i += 1
            continue

        if state is _TokenState.LINE_END:
            state = _TokenState.FIELD
            if char == "\n" and content[i - 1] == "\r":
                i += 1
                continue

        if char == '"':
            state = _TokenState.QUOTED
        elif char == delimiter:
            row.append("".join(field))
            field = []
        elif char in "\r\n":
            row.append("".join(field))
            field = []
            _emit_row(rows, row)
            row = []
            state = _TokenState.LINE_END
        else:
            field.append(char)
        i += 1

    if field or row:
        row.append("".join(field))
        _emit_row(rows, row)

    return rows


def format_csv_row(values: Iterable[Optional[str]]) -> str:
    """Quote every field, doubling embedded quotes, LF-terminated."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["" if value is None else str(value) for value in values])
    return buffer.getvalue()


class LedgerWriter:
    """Append-only CSV ledger with a fixed, versioned header row"""

    def __init__(self, path: Path, header: List[str]):
        self.path = Path(path)
        self.header = list(header)

    @property
    def header_line(self) -> str:
        return ",".join(self.header)

    def _ensure_output_dir(self) -> None:
        """Create output directory if it doesn't exist"""
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def ensure_header(self) -> bool:
        """
        Create the ledger or fix its header line.

        Returns True when the file was written. Only the first line is ever
        replaced; data rows are kept byte for byte.
        """
        self._ensure_output_dir()
        if not self.path.exists():
            self.path.write_text(self.header_line + "\n", encoding="utf-8")
            logger.info(f"Ledger created: {self.path}")
            return True

        content = self.path.read_text(encoding="utf-8-sig")
        first_line, separator, rest = content.partition("\n")
        if first_line.strip() == self.header_line:
            return False

        with open(self.path, "w", encoding="utf-8", newline="") as f:
            f.write(self.header_line + (separator + rest if separator else "\n"))
        logger.warning("Ledger header did not match current schema; header line rewritten: %s", self.path)
        return True

    def read_rows(self) -> List[List[str]]:
        if not self.path.exists():
            return []
        return parse_csv(self.path.read_text(encoding="utf-8-sig"))

    def _ends_with_newline(self) -> bool:
        try:
            with open(self.path, "rb") as f:
                f.seek(0, io.SEEK_END)
                if f.tell() == 0:
                    return True
                f.seek(-1, io.SEEK_END)
                return f.read(1) in (b"\n", b"\r")
        except FileNotFoundError:
            return True

    def append(self, values: Iterable[Optional[str]]) -> None:
        """Append one row and flush it before returning."""
        self._ensure_output_dir()
        line = format_csv_row(values)
        needs_break = not self._ends_with_newline()
        with open(self.path, "a", encoding="utf-8", newline="") as f:
            if needs_break:
                f.write("\n")
            f.write(line)
            f.flush()
