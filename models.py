"""
Data models for leads and conversation history.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class LeadStatus(str, Enum):
    NEW = "new"
    CALLED = "called"
    CALL_COMPLETED = "call_completed"


# Columns a caller may set on a lead; the rest are managed by the store.
LEAD_FIELDS = [
    "date",
    "lead_id",
    "name",
    "phone_number",
    "email",
    "language",
    "alternate_phone",
    "address",
    "city",
    "country",
    "state",
    "customer_type",
    "new_customer",
    "product_type",
    "status",
]


class LeadIn(BaseModel):
    """A lead as submitted by the admin API or the CSV importer."""

    phone_number: str
    name: Optional[str] = None
    email: Optional[str] = None
    status: LeadStatus = LeadStatus.NEW
    date: Optional[str] = None
    lead_id: Optional[str] = None
    language: Optional[str] = None
    alternate_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    state: Optional[str] = None
    customer_type: Optional[str] = None
    new_customer: Optional[str] = None
    product_type: Optional[str] = None


class LeadUpdate(BaseModel):
    """Partial update; only the fields that are set are written."""

    phone_number: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[LeadStatus] = None


class ConversationEntry(BaseModel):
    id: int
    lead_id: int
    timestamp: str
    content: str
    is_ai_response: bool


class LeadSummary(BaseModel):
    id: int
    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    last_updated: Optional[str] = None
    conversations: List[ConversationEntry] = Field(default_factory=list)


class LeadPage(BaseModel):
    leads: List[LeadSummary]
    currentPage: int
    totalPages: int
    pageSize: int


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Convert an aiosqlite Row (or None) into a plain dict."""
    return dict(row) if row is not None else {}
