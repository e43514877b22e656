"""
Ticket status transitions and their side effects.

    closed         -> notes required, closure reply, "closed" label, archive + delete
    pending        -> contact attempt logged, no-response reply, "no_response" label
    rma_request    -> material + notes required, rma reply, "rma" label
    material_sent  -> material + notes required, material reply, "rma" label
    archived       -> refused (archiving only happens through closure)
    anything else  -> stored, no reply

Reply content comes from an injected generator (the AI collaborator). When it
fails, a plain template body is sent instead. A failed send is NOT swallowed:
SendError reaches the caller so the UI can report it.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from firebase_admin import firestore

from .config import ResolutionLabels, Sector
from .errors import TicketActionError
from .labels import apply_resolution_label
from .reply_composer import CaseType, CASE_TEMPLATES, case_subject, send_reply
from .ticket_store import TicketStatus

logger = logging.getLogger("sapmail.ticket_actions")

CASE_BY_STATUS = {
    TicketStatus.CLOSED: CaseType.CLOSURE,
    TicketStatus.PENDING: CaseType.NO_RESPONSE,
    TicketStatus.RMA_REQUEST: CaseType.RMA,
    TicketStatus.MATERIAL_SENT: CaseType.MATERIAL,
}

MATERIAL_STATUSES = (TicketStatus.RMA_REQUEST, TicketStatus.MATERIAL_SENT)


@dataclass
class ActionResult:
    status: str
    reply_id: str = ""
    label_id: Optional[str] = None
    archive_id: str = ""

    def to_dict(self):
        return {
            "status": self.status,
            "replyId": self.reply_id,
            "labelId": self.label_id,
            "archiveId": self.archive_id,
        }


def resolution_label_for(status, labels):
    if status == TicketStatus.CLOSED:
        return labels.closed
    if status == TicketStatus.PENDING:
        return labels.no_response
    if status in MATERIAL_STATUSES:
        return labels.rma
    return ""


def default_response_content(ticket, case_type, technician_notes=None, material_details=None):
    """Template reply body, used when no generated content is available."""
    _, intro = CASE_TEMPLATES[CaseType(case_type)]
    lines = [
        f"<h2>{html.escape(case_subject(case_type, ticket.ticket_number))}</h2>",
        "<p>Bonjour,</p>",
    ]
    if intro:
        lines.append(f"<p>{html.escape(intro)}</p>")

    details = [f"<li><strong>Numéro SAP :</strong> {html.escape(ticket.ticket_number)}</li>"]
    if ticket.company_name:
        details.append(f"<li><strong>Client :</strong> {html.escape(ticket.company_name)}</li>")
    if technician_notes:
        details.append(f"<li><strong>Notes du technicien :</strong> {html.escape(technician_notes)}</li>")
    if material_details:
        details.append(f"<li><strong>Matériel :</strong> {html.escape(material_details)}</li>")
    lines.append("<ul>" + "".join(details) + "</ul>")
    lines.append("<p>Cordialement,</p>")
    return "\n".join(lines)


def _validate(status, technician_notes, material_type, material_details):
    if status == TicketStatus.ARCHIVED:
        raise TicketActionError("Archiving through a status update is not supported")
    if status == TicketStatus.CLOSED and not technician_notes:
        raise TicketActionError("Technician notes are required to close a ticket")
    if status in MATERIAL_STATUSES and not (material_type and material_details and technician_notes):
        raise TicketActionError(
            f"Material type, material details and technician notes are required for {status.value}"
        )


def _generate_content(generator, ticket, technician_notes, material_details, case_type):
    if generator is not None:
        try:
            content = generator(ticket, technician_notes, case_type)
            if content:
                return content
            logger.warning(f"Empty generated content for ticket {ticket.ticket_number}, using template")
        except Exception as e:
            logger.error(f"Content generation failed for ticket {ticket.ticket_number}: {e}")
    return default_response_content(ticket, case_type, technician_notes, material_details)


def update_ticket_status(store, gmail, sector, ticket_id, status,
                         technician_notes: Optional[str] = None,
                         material_type: Optional[str] = None,
                         material_details: Optional[str] = None,
                         labels: Optional[ResolutionLabels] = None,
                         technician_name: str = "",
                         content_generator: Optional[Callable] = None,
                         sender: str = "") -> ActionResult:
    """
    Apply a status change to a stored ticket.

    Args:
        store: TicketStore
        gmail: GmailClient used for the reply and the label
        sector: Sector or sector name
        content_generator: callable(ticket, technician_notes, case_type) -> html

    Raises:
        TicketActionError: invalid request or unknown ticket
        SendError: the reply could not be sent
    """
    try:
        status = TicketStatus(status)
    except ValueError:
        raise TicketActionError(f"Unknown status: {status!r}")
    try:
        sector = Sector.parse(sector)
    except ValueError as e:
        raise TicketActionError(str(e))

    _validate(status, technician_notes, material_type, material_details)

    ticket = store.get(ticket_id, sector)
    if ticket is None:
        raise TicketActionError(f"Ticket {ticket_id} not found in {sector.value}")

    labels = labels or ResolutionLabels()
    result = ActionResult(status=status.value)
    update = {"status": status.value}
    if technician_notes is not None:
        update["technicianNotes"] = technician_notes
    if material_type is not None:
        update["materialType"] = material_type
    if material_details is not None:
        update["materialDetails"] = material_details
    if status == TicketStatus.PENDING:
        attempt = {"date": datetime.now(timezone.utc), "method": "phone", "success": False}
        update["contactAttempts"] = firestore.ArrayUnion([attempt])

    case_type = CASE_BY_STATUS.get(status)
    content = ""
    if case_type is not None:
        content = _generate_content(content_generator, ticket, technician_notes, material_details, case_type)
        update["aiSummary"] = content

    store.update(ticket.id, sector, update)
    ticket.status = status
    logger.info(f"Ticket {ticket.id} ({ticket.ticket_number}) set to {status.value}")

    if content and ticket.source_message_id:
        result.reply_id = send_reply(gmail, ticket, content, case_type, sender=sender)
        label_name = resolution_label_for(status, labels)
        if label_name:
            result.label_id = apply_resolution_label(gmail, ticket.thread_id, label_name)
    elif content:
        logger.warning(f"Ticket {ticket.id} has no source message, no reply sent")

    if status == TicketStatus.CLOSED:
        result.archive_id = store.archive(ticket, technician_notes, technician_name)

    return result
