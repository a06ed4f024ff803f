# utils/csv_utils.py

import csv
import os
from typing import Any, Dict, Iterable, List


def ensure_dir_for_file(file_path: str) -> None:
    """Creates the parent directory of file_path if it does not exist yet."""
    directory = os.path.dirname(os.path.abspath(file_path))
    os.makedirs(directory, exist_ok=True)


def _cell(value: Any) -> Any:
    # csv writes None as "", which is what we want; everything else passes through.
    return "" if value is None else value


def write_csv(file_path: str, rows: Iterable[Dict[str, Any]], headers: List[str]) -> int:
    """
    Writes rows to file_path, replacing any previous content.

    Returns the number of data rows written.
    """
    ensure_dir_for_file(file_path)
    count = 0
    with open(file_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=headers, extrasaction="ignore", lineterminator="\n")
        writer.writeheader()
        for row in rows:
            writer.writerow({h: _cell(row.get(h)) for h in headers})
            count += 1
    return count


def append_csv(file_path: str, rows: Iterable[Dict[str, Any]], headers: List[str]) -> int:
    """
    Appends rows to file_path. The header is written only when the file
    does not exist yet.

    Values containing a comma, quote or newline are quoted with embedded
    quotes doubled (csv.QUOTE_MINIMAL).
    """
    ensure_dir_for_file(file_path)
    exists = os.path.exists(file_path)
    count = 0
    with open(file_path, "a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=headers, extrasaction="ignore", lineterminator="\n")
        if not exists:
            writer.writeheader()
        for row in rows:
            writer.writerow({h: _cell(row.get(h)) for h in headers})
            count += 1
    return count


def read_csv(file_path: str) -> List[Dict[str, str]]:
    """Reads a CSV file with a header row into a list of dicts."""
    with open(file_path, newline="", encoding="utf-8-sig") as f:
        return list(csv.DictReader(f))
