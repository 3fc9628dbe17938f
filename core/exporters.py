"""CSV and JSON export of scan results."""
import csv
import json
import logging
from typing import Iterable

from models.detection import ScanResult

logger = logging.getLogger(__name__)

CSV_FIELDS = ["url", "matched_names", "priority", "length", "title", "plugins"]


def write_json(results: Iterable[ScanResult], path: str) -> None:
    rows = [r.to_dict() for r in results]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=2, ensure_ascii=False)
    logger.info(f"Wrote {len(rows)} results to {path}")


def write_csv(results: Iterable[ScanResult], path: str) -> None:
    """One row per target; multi-valued fields are joined with ';'."""
    count = 0
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for result in results:
            row = result.to_dict()
            row["matched_names"] = ";".join(row["matched_names"])
            row["plugins"] = ";".join(row["plugins"])
            writer.writerow(row)
            count += 1
    logger.info(f"Wrote {count} results to {path}")
