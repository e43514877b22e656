"""
Sector ticket persistence: normalization, dedup guard, writer.

One Firestore collection per sector (Kezia, HACCP, CHR, Tabac). Uniqueness of
ticketNumber inside a collection is NOT a Firestore constraint; it holds
because every write is preceded by exists() and because the cleanup sweeps
remove whatever slips through.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List

from firebase_admin import firestore

from .config import Sector, ARCHIVE_COLLECTION
from .errors import PersistenceError, MailProviderError
from .field_extractor import NOT_FOUND
from .values import scalar, scalar_list

logger = logging.getLogger("sapmail.ticket_store")

_NON_DIGITS = re.compile(r"[^0-9]")


class TicketStatus(str, Enum):
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"
    RMA_REQUEST = "rma_request"
    MATERIAL_SENT = "material_sent"
    ARCHIVED = "archived"


@dataclass
class SectorTicket:
    sector: Sector
    ticket_number: str
    company_name: str = NOT_FOUND
    client_code: str = NOT_FOUND
    address: str = NOT_FOUND
    phone_numbers: List[str] = field(default_factory=list)
    request_text: str = NOT_FOUND
    received_date: str = NOT_FOUND
    source_message_id: str = ""
    thread_id: str = ""
    message_id_header: str = ""
    references_header: str = ""
    from_address: str = ""
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    subject_line: str = ""
    message_date: str = ""
    status: TicketStatus = TicketStatus.OPEN
    id: str = ""

    @classmethod
    def from_extraction(cls, fields, envelope, ticket_number, sector):
        return cls(
            sector=Sector.parse(sector),
            ticket_number=ticket_number,
            company_name=fields.company_name,
            client_code=fields.client_code,
            address=fields.address,
            phone_numbers=list(fields.phone_numbers),
            request_text=fields.request_text,
            received_date=fields.received_date,
            source_message_id=envelope.message_id or "",
            thread_id=envelope.thread_id or "",
            message_id_header=envelope.message_id_header or "",
            references_header=envelope.references_header or "",
            from_address=envelope.from_address or "",
            to_addresses=list(envelope.to_addresses or []),
            cc_addresses=list(envelope.cc_addresses or []),
            subject_line=envelope.subject or "",
            message_date=envelope.date or "",
        )

    @classmethod
    def from_document(cls, doc_id, data, sector):
        """Rebuild from a stored document, unwrapping legacy {stringValue} fields."""
        data = data or {}
        status = scalar(data.get("status"), TicketStatus.OPEN.value)
        try:
            status = TicketStatus(status)
        except ValueError:
            logger.warning(f"Ticket {doc_id}: unknown status {status!r}, read as open")
            status = TicketStatus.OPEN
        return cls(
            id=doc_id,
            sector=Sector.parse(sector),
            ticket_number=scalar(data.get("ticketNumber")),
            company_name=scalar(data.get("companyName"), NOT_FOUND),
            client_code=scalar(data.get("clientCode"), NOT_FOUND),
            address=scalar(data.get("address"), NOT_FOUND),
            phone_numbers=scalar_list(data.get("phoneNumbers")),
            request_text=scalar(data.get("requestText"), NOT_FOUND),
            received_date=scalar(data.get("receivedDate"), NOT_FOUND),
            source_message_id=scalar(data.get("sourceMessageId")),
            thread_id=scalar(data.get("threadId")),
            message_id_header=scalar(data.get("messageIdHeader")),
            references_header=scalar(data.get("referencesHeader")),
            from_address=scalar(data.get("fromAddress")),
            to_addresses=scalar_list(data.get("toAddresses")),
            cc_addresses=scalar_list(data.get("ccAddresses")),
            subject_line=scalar(data.get("subjectLine")),
            message_date=scalar(data.get("messageDate")),
            status=status,
        )

    def to_document(self):
        return {
            "sector": self.sector.value,
            "ticketNumber": self.ticket_number,
            "companyName": self.company_name,
            "clientCode": self.client_code,
            "address": self.address,
            "phoneNumbers": list(self.phone_numbers),
            "requestText": self.request_text,
            "receivedDate": self.received_date,
            "sourceMessageId": self.source_message_id or "",
            "threadId": self.thread_id or "",
            "messageIdHeader": self.message_id_header or "",
            "referencesHeader": self.references_header or "",
            "fromAddress": self.from_address or "",
            "toAddresses": list(self.to_addresses or []),
            "ccAddresses": list(self.cc_addresses or []),
            "subjectLine": self.subject_line or "",
            "messageDate": self.message_date or "",
            "status": self.status.value,
        }


def normalize_ticket_number(raw, sector=None):
    """
    Canonical digits-only ticket number, or "" to reject.

    The sentinel and anything without a digit are rejected.
    """
    if not raw or raw == NOT_FOUND:
        logger.warning(f"[{_sector_name(sector)}] No ticket number extracted ({raw!r}), message skipped")
        return ""
    cleaned = _NON_DIGITS.sub("", str(raw))
    if not cleaned:
        logger.warning(f"[{_sector_name(sector)}] Invalid ticket number {raw!r} -> {cleaned!r}, message skipped")
    return cleaned


def _sector_name(sector):
    if sector is None:
        return "-"
    try:
        return Sector.parse(sector).value
    except ValueError:
        return str(sector)


class TicketStore:
    """Firestore access for sector collections and the archive."""

    def __init__(self, db):
        self.db = db

    def collection(self, sector):
        return self.db.collection(Sector.parse(sector).collection)

    def exists(self, ticket_number, sector):
        """True if the sector already holds a ticket with this canonical number."""
        if not ticket_number:
            return False
        try:
            query = self.collection(sector).where("ticketNumber", "==", ticket_number).limit(1)
            return len(list(query.get())) > 0
        except Exception as e:
            raise PersistenceError(
                f"Lookup of ticket {ticket_number} in {_sector_name(sector)} failed: {e}"
            ) from e

    def insert(self, ticket):
        """Add a new ticket; createdAt is set by Firestore. Returns the document id."""
        data = ticket.to_document()
        data["createdAt"] = firestore.SERVER_TIMESTAMP
        try:
            _, ref = self.collection(ticket.sector).add(data)
        except Exception as e:
            raise PersistenceError(
                f"Write of ticket {ticket.ticket_number} to {ticket.sector.value} failed: {e}"
            ) from e
        ticket.id = ref.id
        return ref.id

    def get(self, ticket_id, sector):
        snapshot = self.collection(sector).document(ticket_id).get()
        if not snapshot.exists:
            return None
        return SectorTicket.from_document(snapshot.id, snapshot.to_dict(), sector)

    def update(self, ticket_id, sector, data):
        self.collection(sector).document(ticket_id).update(data)

    def delete(self, ticket_id, sector):
        self.collection(sector).document(ticket_id).delete()

    def archive(self, ticket, technician_notes, technician_name):
        """Copy a closed ticket into the archive collection, then delete the original."""
        archive_data = {
            "originalTicketId": ticket.id,
            "archivedDate": firestore.SERVER_TIMESTAMP,
            "closureReason": "resolved",
            "technicianNotes": technician_notes or "Aucune note fournie",
            "technician": technician_name or "",
            "companyName": ticket.company_name,
            "ticketNumber": ticket.ticket_number,
            "sector": ticket.sector.value,
            "sourceMessageId": ticket.source_message_id or "",
            "documents": [],
        }
        _, ref = self.db.collection(ARCHIVE_COLLECTION).add(archive_data)
        logger.info(f"Ticket {ticket.id} archived to {ARCHIVE_COLLECTION}/{ref.id}")
        self.delete(ticket.id, ticket.sector)
        logger.info(f"Original ticket {ticket.id} deleted from {ticket.sector.value}")
        return ref.id


class TicketWriter:
    """Persist a new ticket, then mark its source message processed."""

    def __init__(self, store, gmail, processed_label_name):
        self.store = store
        self.gmail = gmail
        self.processed_label_name = processed_label_name

    def write(self, fields, envelope, ticket_number, sector):
        ticket = SectorTicket.from_extraction(fields, envelope, ticket_number, sector)
        doc_id = self.store.insert(ticket)
        logger.info(f"[{ticket.sector.value}] Ticket {ticket_number} stored as {doc_id}")
        self.mark_processed(ticket.source_message_id)
        return ticket

    def mark_processed(self, message_id):
        """Apply the processed label (created on demand). Failures are logged only."""
        if not message_id:
            return False
        try:
            label_id = self.gmail.ensure_label(self.processed_label_name)
            self.gmail.apply_label(message_id, label_id)
        except MailProviderError as e:
            logger.warning(f"Could not label message {message_id} '{self.processed_label_name}': {e}")
            return False
        logger.info(f"Label '{self.processed_label_name}' added to message {message_id}")
        return True
