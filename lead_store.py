"""
Lead store: CRUD over leads and conversation history in SQLite.

Every public operation that takes a phone number canonicalizes it first and
treats a number with no canonical form as "no such lead".
"""
import math
from typing import Any, Dict, List, Optional

import aiosqlite
import structlog

from config import USER_AUDIO_PLACEHOLDER
from models import LEAD_FIELDS, LeadIn, LeadStatus, LeadUpdate, row_to_dict
from utils import standardize_phone_number

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS leads (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  date TEXT,
  lead_id TEXT,
  name TEXT,
  phone_number TEXT,
  email TEXT,
  language TEXT,
  alternate_phone TEXT,
  address TEXT,
  city TEXT,
  country TEXT,
  state TEXT,
  customer_type TEXT,
  new_customer TEXT,
  product_type TEXT,
  status TEXT,
  last_updated DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS conversations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  lead_id INTEGER,
  timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
  content TEXT,
  is_ai_response INTEGER DEFAULT 0,
  FOREIGN KEY (lead_id) REFERENCES leads (id)
);
"""

TEST_PHONE_NUMBER = "+11234567890"
TEST_EMAIL = "test@example.com"


class LeadStoreError(Exception):
    """Raised when the store is used before open() or after close()."""


class LeadStore:
    """Async access to the leads database. One connection per process."""

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise LeadStoreError("Lead store is not open")
        return self._db

    async def open(self) -> None:
        if self._db is not None:
            return
        logger.info("Opening lead database", database_path=self.database_path)
        self._db = await aiosqlite.connect(self.database_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info("Database tables created or verified")

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None
        logger.info("Lead database closed")

    # =============================
    # Leads
    # =============================
    async def add_lead(self, lead: LeadIn) -> Optional[int]:
        """Insert a lead. Returns the new row id, or None for an invalid number."""
        phone_number = standardize_phone_number(lead.phone_number)
        if not phone_number:
            logger.warning("Skipping lead with invalid phone number", phone_number=lead.phone_number)
            return None

        values = lead.model_dump()
        values["phone_number"] = phone_number
        values["status"] = LeadStatus(values["status"]).value
        columns = ", ".join(LEAD_FIELDS)
        placeholders = ", ".join("?" for _ in LEAD_FIELDS)
        cursor = await self.db.execute(
            f"INSERT OR REPLACE INTO leads ({columns}, last_updated) VALUES ({placeholders}, CURRENT_TIMESTAMP)",
            [values.get(name) for name in LEAD_FIELDS],
        )
        await self.db.commit()
        return cursor.lastrowid

    async def get_lead(self, phone_number: Optional[str]) -> Optional[Dict[str, Any]]:
        standardized = standardize_phone_number(phone_number)
        if not standardized:
            return None
        async with self.db.execute(
            "SELECT * FROM leads WHERE phone_number = ? OR alternate_phone = ?",
            (standardized, standardized),
        ) as cursor:
            row = await cursor.fetchone()
        return row_to_dict(row) or None

    async def get_lead_by_id(self, lead_id: int) -> Optional[Dict[str, Any]]:
        async with self.db.execute("SELECT * FROM leads WHERE id = ?", (lead_id,)) as cursor:
            row = await cursor.fetchone()
        return row_to_dict(row) or None

    async def list_leads(self) -> List[Dict[str, Any]]:
        async with self.db.execute("SELECT * FROM leads ORDER BY last_updated DESC, id DESC") as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def update_lead(self, lead_id: int, update: LeadUpdate) -> Optional[Dict[str, Any]]:
        changes = update.model_dump(exclude_unset=True)
        if "phone_number" in changes:
            changes["phone_number"] = standardize_phone_number(changes["phone_number"])
            if not changes["phone_number"]:
                raise ValueError(f"Invalid phone number: {update.phone_number}")
        if changes.get("status") is not None:
            changes["status"] = LeadStatus(changes["status"]).value

        if changes:
            assignments = ", ".join(f"{name} = ?" for name in changes)
            await self.db.execute(
                f"UPDATE leads SET {assignments}, last_updated = CURRENT_TIMESTAMP WHERE id = ?",
                [*changes.values(), lead_id],
            )
            await self.db.commit()
        return await self.get_lead_by_id(lead_id)

    async def delete_lead(self, lead_id: int) -> bool:
        await self.db.execute("DELETE FROM conversations WHERE lead_id = ?", (lead_id,))
        cursor = await self.db.execute("DELETE FROM leads WHERE id = ?", (lead_id,))
        await self.db.commit()
        return cursor.rowcount > 0

    async def update_lead_status(self, phone_number: Optional[str], status: LeadStatus) -> int:
        standardized = standardize_phone_number(phone_number)
        if not standardized:
            logger.warning("Cannot update status for invalid phone number", phone_number=phone_number)
            return 0

        cursor = await self.db.execute(
            "UPDATE leads SET status = ?, last_updated = CURRENT_TIMESTAMP "
            "WHERE phone_number = ? OR alternate_phone = ?",
            (LeadStatus(status).value, standardized, standardized),
        )
        await self.db.commit()
        logger.info("Updated lead status", phone_number=standardized, status=LeadStatus(status).value,
                    rows=cursor.rowcount)
        return cursor.rowcount

    async def update_lead_email(self, phone_number: Optional[str], email: str) -> Optional[Dict[str, Any]]:
        """Set a lead's email, inserting a new lead when none matches."""
        standardized = standardize_phone_number(phone_number)
        if not standardized:
            logger.warning("Cannot update email for invalid phone number", phone_number=phone_number)
            return None

        cursor = await self.db.execute(
            "UPDATE leads SET email = ?, last_updated = CURRENT_TIMESTAMP "
            "WHERE phone_number = ? OR alternate_phone = ?",
            (email, standardized, standardized),
        )
        if cursor.rowcount == 0:
            logger.info("No existing lead found, inserting new lead", phone_number=standardized)
            await self.db.execute(
                "INSERT INTO leads (phone_number, email, status, last_updated) "
                "VALUES (?, ?, ?, CURRENT_TIMESTAMP)",
                (standardized, email, LeadStatus.NEW.value),
            )
        await self.db.commit()

        updated = await self.get_lead(standardized)
        if not updated or updated.get("email") != email:
            logger.error("Email update failed", phone_number=standardized, expected=email,
                         actual=updated.get("email") if updated else None)
        return updated

    async def add_dev_phone(self, phone_number: str) -> None:
        standardized = standardize_phone_number(phone_number)
        if not standardized:
            raise ValueError("Invalid Twilio dev phone number")
        if await self.get_lead(standardized):
            return
        await self.add_lead(LeadIn(phone_number=standardized, name="Twilio Dev Phone"))

    async def get_all_phone_numbers(self) -> List[str]:
        """Distinct canonical numbers; cells holding "a / b" count as two numbers."""
        async with self.db.execute("SELECT phone_number FROM leads") as cursor:
            rows = await cursor.fetchall()

        numbers: List[str] = []
        for row in rows:
            cell = row["phone_number"]
            if not cell:
                continue
            for part in cell.split("/"):
                standardized = standardize_phone_number(part.strip())
                if standardized and standardized not in numbers:
                    numbers.append(standardized)
        return numbers

    # =============================
    # Conversations
    # =============================
    async def add_conversation(self, phone_number: Optional[str], content: str,
                               is_ai_response: bool = False) -> Optional[int]:
        """Append an entry to the matching lead's history; no-op without a lead."""
        standardized = standardize_phone_number(phone_number)
        if not standardized:
            logger.warning("Cannot add conversation for invalid phone number", phone_number=phone_number)
            return None

        lead = await self.get_lead(standardized)
        if not lead:
            logger.debug("No lead for conversation entry", phone_number=standardized)
            return None

        cursor = await self.db.execute(
            "INSERT INTO conversations (lead_id, content, is_ai_response) VALUES (?, ?, ?)",
            (lead["id"], content, 1 if is_ai_response else 0),
        )
        await self.db.execute("UPDATE leads SET last_updated = CURRENT_TIMESTAMP WHERE id = ?", (lead["id"],))
        await self.db.commit()
        return cursor.lastrowid

    async def get_conversation_history(self, phone_number: Optional[str]) -> List[Dict[str, Any]]:
        lead = await self.get_lead(phone_number)
        if not lead:
            return []
        async with self.db.execute(
            "SELECT * FROM conversations WHERE lead_id = ? ORDER BY timestamp DESC, id DESC",
            (lead["id"],),
        ) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def get_lead_data(self, phone_number: Optional[str]) -> Optional[Dict[str, Any]]:
        """A lead plus its meaningful conversation, oldest first."""
        lead = await self.get_lead(phone_number)
        if not lead:
            return None
        async with self.db.execute(
            "SELECT * FROM conversations WHERE lead_id = ? AND (is_ai_response = 1 OR content != ?) "
            "ORDER BY timestamp ASC, id ASC",
            (lead["id"], USER_AUDIO_PLACEHOLDER),
        ) as cursor:
            rows = await cursor.fetchall()
        return {**lead, "conversations": [dict(row) for row in rows]}

    async def get_paginated_lead_data(self, page: int = 1, page_size: int = 10) -> Dict[str, Any]:
        page = max(page, 1)
        page_size = max(page_size, 1)
        offset = (page - 1) * page_size

        async with self.db.execute(
            "SELECT * FROM leads ORDER BY last_updated DESC, id DESC LIMIT ? OFFSET ?",
            (page_size, offset),
        ) as cursor:
            leads = [dict(row) for row in await cursor.fetchall()]

        for lead in leads:
            async with self.db.execute(
                "SELECT id, lead_id, timestamp, content, is_ai_response FROM conversations "
                "WHERE lead_id = ? AND content != ? AND is_ai_response = 1 ORDER BY timestamp ASC, id ASC",
                (lead["id"], USER_AUDIO_PLACEHOLDER),
            ) as cursor:
                lead["conversations"] = [dict(row) for row in await cursor.fetchall()]

        async with self.db.execute("SELECT COUNT(*) AS count FROM leads") as cursor:
            total = (await cursor.fetchone())["count"]

        return {
            "leads": [
                {
                    "id": lead["id"],
                    "name": lead["name"],
                    "phone_number": lead["phone_number"],
                    "email": lead["email"] or None,
                    "status": lead["status"],
                    "last_updated": lead["last_updated"],
                    "conversations": lead["conversations"],
                }
                for lead in leads
            ],
            "currentPage": page,
            "totalPages": math.ceil(total / page_size),
            "pageSize": page_size,
        }

    # =============================
    # Manual checks
    # =============================
    async def test_database_write(self) -> bool:
        try:
            result = await self.update_lead_email(TEST_PHONE_NUMBER, TEST_EMAIL)
        except Exception:
            logger.exception("Error during database write test")
            return False
        return bool(result) and result.get("email") == TEST_EMAIL
