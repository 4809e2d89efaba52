"""
CSV archive writer for purged audit rows
"""

import csv
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List

logger = logging.getLogger(__name__)


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def archive_path_for(archive_dir: Path, prefix: str, run_date: date) -> Path:
    """First free file name for this run date"""
    path = archive_dir / f"{prefix}-{run_date:%Y-%m-%d}.csv"
    counter = 1
    while path.exists():
        path = archive_dir / f"{prefix}-{run_date:%Y-%m-%d}-{counter}.csv"
        counter += 1
    return path


def write_csv_archive(rows: Iterable[Dict[str, Any]],
                      columns: List[str],
                      archive_dir: str,
                      prefix: str,
                      run_date: date) -> Path:
    """
    Write rows to a dated CSV file

    The header row is always written. The file is written under a
    temporary name and renamed, so a failed run leaves no partial archive.

    Args:
        rows: Row dictionaries
        columns: Field names, in output order
        archive_dir: Target directory, created if missing
        prefix: File name prefix, usually the table name
        run_date: Date embedded in the file name

    Returns:
        Path of the archive file
    """
    directory = Path(archive_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = archive_path_for(directory, prefix, run_date)
    temp_file = path.with_suffix(".tmp")

    count = 0
    with open(temp_file, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(columns)
        for row in rows:
            writer.writerow([_format_value(row.get(column)) for column in columns])
            count += 1
    temp_file.replace(path)

    logger.info(f"✓ Archived {count} rows to {path}")
    return path
