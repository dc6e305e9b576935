"""
Bulk lead import from CSV exports.

Exports come in two shapes: with a header row naming the lead columns, or
headerless with the columns in CSV_COLUMNS order.
"""
import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from lead_store import LeadStore
from models import LeadIn, LeadStatus
from utils import standardize_phone_number

logger = structlog.get_logger(__name__)

CSV_COLUMNS = [
    "date",
    "lead_id",
    "name",
    "phone_number",
    "language",
    "address",
    "city",
    "country",
    "state",
    "customer_type",
    "new_customer",
    "product_type",
]


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def _rows(path: Path) -> List[Dict[str, str]]:
    with path.open(newline="", encoding="utf-8-sig") as f:
        reader = csv.reader(f)
        rows = [row for row in reader if any(cell.strip() for cell in row)]

    if not rows:
        return []

    header = [cell.strip().lower() for cell in rows[0]]
    if "phone_number" in header:
        columns, data = header, rows[1:]
    else:
        columns, data = CSV_COLUMNS, rows
    return [dict(zip(columns, (cell.strip() for cell in row))) for row in data]


def _lead_from_row(row: Dict[str, str]) -> Optional[LeadIn]:
    phone_number = standardize_phone_number(row.get("phone_number"))
    if not phone_number:
        return None
    return LeadIn(
        phone_number=phone_number,
        date=row.get("date") or None,
        lead_id=row.get("lead_id") or None,
        name=row.get("name") or None,
        email=row.get("email") or None,
        language=row.get("language") or None,
        alternate_phone=row.get("alternate_phone") or "",
        address=row.get("address") or None,
        city=row.get("city") or None,
        country=row.get("country") or None,
        state=row.get("state") or None,
        customer_type=row.get("customer_type") or None,
        new_customer=row.get("new_customer") or None,
        product_type=row.get("product_type") or None,
        status=LeadStatus.NEW,
    )


async def import_csv(store: LeadStore, file_path: str) -> ImportResult:
    """Insert every row with a valid phone number; other rows are skipped.

    Raises FileNotFoundError when the file is missing. A row that fails to
    insert is logged and counted, it does not abort the import.
    """
    path = Path(file_path)
    if not path.is_file():
        raise FileNotFoundError(f"CSV file not found: {file_path}")

    result = ImportResult()
    for line_no, row in enumerate(_rows(path), start=1):
        lead = _lead_from_row(row)
        if lead is None:
            logger.warning("Skipping row with invalid phone number", row=line_no,
                           phone_number=row.get("phone_number"))
            result.skipped += 1
            continue
        try:
            await store.add_lead(lead)
            result.imported += 1
        except Exception as e:
            logger.error("Error inserting row", row=line_no, error=str(e))
            result.errors.append(f"row {line_no}: {e}")

    logger.info("CSV file successfully processed", file_path=file_path,
                imported=result.imported, skipped=result.skipped, errors=len(result.errors))
    return result
