"""
Threaded replies to the message a ticket was created from.

A reply carries In-Reply-To / References built from the stored headers AND is
sent with the stored threadId, so Gmail files it in the conversation even
when a client ignores the headers.
"""

import base64
import logging
import os
from email.header import Header
from email.mime.text import MIMEText
from email.utils import formataddr, getaddresses
from enum import Enum

from .errors import SendError, MailProviderError

logger = logging.getLogger("sapmail.reply_composer")

# Prepended to rma / material bodies so the logistics desk is notified
RMA_MENTION = os.environ.get("RMA_MENTION", "<p><strong>@Service RMA</strong></p>")


class CaseType(str, Enum):
    CLOSURE = "closure"
    RMA = "rma"
    MATERIAL = "material"
    NO_RESPONSE = "no_response"
    GENERIC = "generic"


# subject format, opening sentence
CASE_TEMPLATES = {
    CaseType.CLOSURE: ("[CLÔTURE] Ticket {number}", "Notre équipe a résolu le problème suivant :"),
    CaseType.RMA: ("[RMA] Demande retour matériel - {number}", "Nous sollicitons un retour matériel pour :"),
    CaseType.MATERIAL: ("[ENVOI] Demande matériel - {number}", "Nous avons besoin d'un envoi matériel pour :"),
    CaseType.NO_RESPONSE: ("[RELANCE] Ticket {number}", "Suite à notre dernier échange :"),
    CaseType.GENERIC: ("[SUIVI] Ticket {number}", ""),
}

MENTION_CASES = (CaseType.RMA, CaseType.MATERIAL)


def case_subject(case_type, ticket_number):
    subject_format, _ = CASE_TEMPLATES[CaseType(case_type)]
    return subject_format.format(number=ticket_number)


def default_subject(ticket_number):
    return f"Réponse concernant votre ticket SAP {ticket_number}"


def build_references(references_header, message_id_header):
    """Prior References with the original Message-ID appended."""
    references = (references_header or "").strip()
    message_id = (message_id_header or "").strip()
    if not message_id:
        return references
    if not references:
        return message_id
    if message_id in references.split():
        return references
    return f"{references} {message_id}"


def format_address(name, addr):
    """Header form of one address; only a non-ASCII display name is encoded."""
    return formataddr((name, addr), charset="utf-8")


def _format_addresses(values):
    return ", ".join(
        format_address(name, addr) for name, addr in getaddresses(list(values)) if addr
    )


def reply_recipients(ticket, sender=""):
    """
    To list for a reply: the original sender first, then the original To
    recipients, without our own mailbox and without repeats.
    """
    own = ""
    if sender:
        own = getaddresses([sender])[0][1].strip().lower()
    seen = set()
    recipients = []
    for raw in [ticket.from_address] + list(ticket.to_addresses or []):
        if not raw:
            continue
        for name, addr in getaddresses([raw]):
            key = addr.strip().lower()
            if not key or key == own or key in seen:
                continue
            seen.add(key)
            recipients.append(format_address(name, addr.strip()))
    return recipients


def compose_reply(ticket, html_body, case_type=CaseType.GENERIC, sender="", subject=None,
                  mention=RMA_MENTION):
    """
    Build the reply as a base64url string (no padding) ready for messages.send.

    Args:
        ticket: SectorTicket with its stored provenance fields
        html_body: response content, HTML
        case_type: CaseType; rma and material bodies get the mention prefix
        sender: From address (our mailbox)
        subject: overrides the default subject

    Raises:
        SendError when the ticket has no usable recipient
    """
    case_type = CaseType(case_type)
    recipients = reply_recipients(ticket, sender)
    if not recipients:
        raise SendError(f"Ticket {ticket.ticket_number}: no recipient to reply to")

    body = html_body or ""
    if case_type in MENTION_CASES and mention:
        body = mention + body

    msg = MIMEText(body, "html", "utf-8")
    if sender:
        msg["From"] = _format_addresses([sender])
    msg["To"] = ", ".join(recipients)
    cc = _format_addresses(ticket.cc_addresses or [])
    if cc:
        msg["Cc"] = cc
    msg["Subject"] = Header(subject or default_subject(ticket.ticket_number), "utf-8")

    if ticket.message_id_header:
        msg["In-Reply-To"] = ticket.message_id_header
    references = build_references(ticket.references_header, ticket.message_id_header)
    if references:
        msg["References"] = references

    return base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")


def send_reply(gmail, ticket, html_body, case_type=CaseType.GENERIC, sender="", subject=None,
               mention=RMA_MENTION):
    """
    Compose and send a reply in the ticket's thread.

    Returns:
        id of the sent message

    Raises:
        SendError on any composition or provider failure
    """
    raw = compose_reply(ticket, html_body, case_type, sender=sender, subject=subject, mention=mention)
    try:
        sent_id = gmail.send(raw, thread_id=ticket.thread_id or None)
    except MailProviderError as e:
        logger.error(f"Reply for ticket {ticket.ticket_number} not sent: {e}")
        raise SendError(f"Reply for ticket {ticket.ticket_number} not sent: {e}") from e
    logger.info(f"Reply {sent_id} sent for ticket {ticket.ticket_number} (thread {ticket.thread_id or '-'})")
    return sent_id
