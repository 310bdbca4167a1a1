#!/usr/bin/env python3
"""
CSV parsing for spreadsheet exports.

Turns raw delimited text into rows of string cells, then (one level up)
into rows keyed by header name with each cell tagged once as a number or a
string. Absent / empty cells are dropped from the row instead of being
stored as zero.

Quoting follows RFC 4180 within a line: a quote toggles a quoted span and
a doubled quote inside a quoted span is a literal quote. Quoted fields that
span physical lines are not supported; the parser is line oriented.
"""

import math
import re
from typing import Iterable, Union

CellValue = Union[str, int, float]
Row = dict[str, CellValue]

# Thousands separators, currency symbols and Unicode space variants that
# spreadsheet exports put inside numbers ("€ 1 234 567", "12,345").
NUMERIC_NOISE = re.compile(r"[,\s\u20ac$\u00a3\u00a5\u00a0\u2000-\u200b\u202f\u205f\u3000]")


def split_line(line: str, delimiter: str = ",") -> list[str]:
    """Split one line on ``delimiter``, honouring quoted spans."""
    cells = []
    buf = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                buf.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            cells.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1
    cells.append("".join(buf).strip())
    return cells


def parse_csv(text: str, delimiter: str = ",") -> list[list[str]]:
    """Parse delimited text into rows of trimmed string cells.

    Blank lines (including lines of whitespace only) are skipped.
    No header interpretation happens here.
    """
    if not text:
        return []
    if text.startswith("\ufeff"):
        text = text[1:]
    return [split_line(line, delimiter)
            for line in text.splitlines()
            if line.strip()]


def coerce_cell(raw) -> CellValue | None:
    """Tag a raw cell as int, float or str. Returns None for an empty cell.

    Strict numeric parse first; on failure, strip separators, currency
    symbols and Unicode whitespace and retry. Non-finite numbers and
    anything still unparsable stay as the (trimmed) string.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return _narrow(raw)
    text = str(raw).strip()
    if not text:
        return None
    for candidate in (text, NUMERIC_NOISE.sub("", text)):
        if not candidate:
            continue
        try:
            num = float(candidate)
        except ValueError:
            continue
        if not math.isfinite(num):
            break
        return _narrow(num)
    return text


def _narrow(num: int | float) -> int | float:
    if isinstance(num, float) and num.is_integer():
        return int(num)
    return num


def rows_from_table(table: Iterable[Iterable]) -> list[Row]:
    """Map a header row plus data rows to a list of Row dicts.

    Header names are trimmed; cells under a blank header are ignored.
    Rows with no populated cell are dropped.
    """
    it = iter(table)
    try:
        header = [str(h).strip() if h is not None else "" for h in next(it)]
    except StopIteration:
        return []
    rows = []
    for cells in it:
        row: Row = {}
        for name, raw in zip(header, cells):
            if not name:
                continue
            value = coerce_cell(raw)
            if value is not None:
                row[name] = value
        if row:
            rows.append(row)
    return rows


def rows_from_csv(text: str, delimiter: str = ",") -> list[Row]:
    """parse_csv + rows_from_table."""
    return rows_from_table(parse_csv(text, delimiter))


def normalize_rows(records: Iterable[dict]) -> list[Row]:
    """Re-tag cells of rows read from JSON or a spreadsheet.

    Keys are trimmed; missing / empty values are dropped rather than kept
    as zero; rows left empty are skipped.
    """
    rows = []
    for rec in records:
        if not isinstance(rec, dict):
            continue
        row: Row = {}
        for key, raw in rec.items():
            name = str(key).strip()
            if not name:
                continue
            value = coerce_cell(raw)
            if value is not None:
                row[name] = value
        if row:
            rows.append(row)
    return rows
