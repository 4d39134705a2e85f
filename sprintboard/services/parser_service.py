"""
Delimited export parser.

Turns the raw text of an issue tracker export (CSV, TSV or semicolon
separated) into an ordered list of rows, each a mapping from header name to
string value. No type coercion happens here; story points and dates stay as
strings until an aggregation consumes them.

The delimiter is sniffed from the first line only:
- tab if present, else semicolon, else comma
- no recognised delimiter -> empty result plus a logged warning
"""

import logging
import re

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".tsv", ".txt")

# "Sprint 12 (03-02-25 to 17-02-25)" style labels
SPRINT_DATE_PATTERN = re.compile(r"(\d{2}-\d{2}-\d{2})\s+to\s+(\d{2}-\d{2}-\d{2})")

SPRINT_COLUMNS = ("Sprint", "G")


def is_supported_filename(filename: str | None) -> bool:
    """Check the upload name against the accepted export suffixes."""
    if not filename:
        return False
    return filename.lower().endswith(SUPPORTED_SUFFIXES)


def decode_export(data: bytes) -> str:
    """Decode uploaded bytes, tolerating a BOM and non UTF-8 exports."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("Export is not valid UTF-8, decoding as latin-1")
        return data.decode("latin-1")


def sniff_delimiter(first_line: str) -> str | None:
    """Pick the field delimiter from the header line."""
    if "\t" in first_line:
        return "\t"
    if ";" in first_line:
        return ";"
    if "," in first_line:
        return ","
    return None


def split_records(text: str, delimiter: str) -> list[list[str]]:
    """
    Scan text into records of raw fields.

    Single left-to-right pass with a quote flag. A doubled quote emits one
    literal quote; a lone quote toggles quoting and is never emitted. CR and
    LF end a record only outside quotes and only when the record has content,
    so CRLF line endings do not produce empty records.
    """
    records: list[list[str]] = []
    record: list[str] = []
    field: list[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]

        if char == '"' and i + 1 < length and text[i + 1] == '"':
            field.append('"')
            i += 2
            continue
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes and char == delimiter:
            record.append("".join(field))
            field = []
        elif not in_quotes and char in "\r\n":
            if field or record:
                record.append("".join(field))
                records.append(record)
                record = []
                field = []
        else:
            field.append(char)
        i += 1

    if field or record:
        record.append("".join(field))
        records.append(record)

    return records


def parse(text: str) -> list[dict[str, str]]:
    """
    Parse export text into rows keyed by the trimmed header names.

    Missing trailing fields become empty strings and fields beyond the header
    count are dropped. Returns an empty list for empty input, an unknown
    delimiter, or a file with no data rows. Never raises.
    """
    cleaned = (text or "").replace("\0", "").strip()
    if not cleaned:
        return []

    first_line = re.split(r"\r?\n", cleaned, maxsplit=1)[0]
    delimiter = sniff_delimiter(first_line)
    if delimiter is None:
        logger.warning("Unknown delimiter in export header: %r", first_line[:80])
        return []

    records = split_records(cleaned, delimiter)
    if len(records) < 2:
        logger.warning("Export has no data rows (%d record(s) found)", len(records))
        return []

    headers = [h.strip() for h in records[0]]
    rows = []
    for record in records[1:]:
        row = {}
        for index, header in enumerate(headers):
            row[header] = record[index].strip() if index < len(record) else ""
        rows.append(row)

    return rows


def _to_us_date(day_first_parts: list[str], year_first: bool) -> str:
    if year_first:
        year, month, day = day_first_parts
    else:
        day, month, year = day_first_parts
    return f"{month}/{day}/20{year}"


def extract_sprint_dates(rows: list[dict[str, str]]) -> dict[str, dict[str, str]]:
    """
    Build sprint name -> {start, end} (MM/DD/YYYY) from sprint labels.

    Only the first occurrence of each sprint label is considered. The label
    must contain "DD-MM-YY to DD-MM-YY"; when the first group exceeds 31 it
    is read as YY-MM-DD instead.
    """
    dates: dict[str, dict[str, str]] = {}
    seen: set[str] = set()

    for row in rows:
        sprint = next((row[c] for c in SPRINT_COLUMNS if row.get(c)), "")
        if not sprint or sprint in seen:
            continue
        seen.add(sprint)

        match = SPRINT_DATE_PATTERN.search(sprint)
        if not match:
            continue

        start_parts = match.group(1).split("-")
        end_parts = match.group(2).split("-")
        # Known limitation: a first group > 31 is assumed to be a year
        year_first = int(start_parts[0]) > 31
        dates[sprint] = {
            "start": _to_us_date(start_parts, year_first),
            "end": _to_us_date(end_parts, year_first),
        }

    return dates


def parse_export(text: str) -> dict:
    """Parse export text and derive the sprint date ranges in one call."""
    rows = parse(text)
    return {"rows": rows, "sprint_dates": extract_sprint_dates(rows)}
