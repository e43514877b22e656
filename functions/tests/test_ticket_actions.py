"""
Tests for sapmail.ticket_actions — status transitions, reply, label, archive.
"""

import base64
import email

import pytest
from unittest.mock import Mock

from firebase_admin import firestore

from sapmail.config import ResolutionLabels, Sector
from sapmail.errors import TicketActionError, SendError, TransientProviderError
from sapmail.reply_composer import CaseType, RMA_MENTION
from sapmail.ticket_actions import update_ticket_status, default_response_content
from sapmail.ticket_store import TicketStore, SectorTicket

LABELS = ResolutionLabels(closed="SAP/Clos", no_response="SAP/Sans réponse", rma="SAP/RMA")


@pytest.fixture
def store(fake_db):
    return TicketStore(fake_db)


@pytest.fixture
def ticket_id(fake_db):
    _, ref = fake_db.collection("CHR").add({
        "ticketNumber": "1234567",
        "companyName": "SuperMart",
        "sourceMessageId": "m1",
        "threadId": "t1",
        "messageIdHeader": "<orig@client.fr>",
        "referencesHeader": "",
        "fromAddress": "sap@client.fr",
        "toAddresses": ["support@jdc.fr"],
        "ccAddresses": [],
        "status": "open",
        "createdAt": firestore.SERVER_TIMESTAMP,
    })
    return ref.id


@pytest.fixture
def gmail(fake_gmail):
    fake_gmail.labels.update({"SAP/Clos": "Label_C", "SAP/Sans réponse": "Label_N", "SAP/RMA": "Label_R"})
    return fake_gmail


def _sent_body(gmail, index=0):
    raw = gmail.sent[index][0]
    msg = email.message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
    return msg.get_payload(decode=True).decode("utf-8")


def _generator(content="<p>Généré</p>"):
    return Mock(return_value=content)


class TestValidation:

    def test_archived_refused(self, store, gmail, ticket_id):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", ticket_id, "archived")

    def test_close_requires_notes(self, store, gmail, ticket_id):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", ticket_id, "closed")

    @pytest.mark.parametrize("status", ["rma_request", "material_sent"])
    def test_material_fields_required(self, store, gmail, ticket_id, status):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", ticket_id, status,
                                 technician_notes="notes", material_type="TPE")

    def test_unknown_status(self, store, gmail, ticket_id):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", ticket_id, "reopened")

    def test_unknown_ticket(self, store, gmail):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", "missing", "pending")

    def test_invalid_request_sends_nothing(self, store, gmail, ticket_id, fake_db):
        with pytest.raises(TicketActionError):
            update_ticket_status(store, gmail, "CHR", ticket_id, "closed")
        assert gmail.sent == []
        assert fake_db.docs("CHR")[ticket_id]["status"] == "open"


class TestClosure:

    def test_reply_label_archive(self, store, gmail, ticket_id, fake_db):
        generator = _generator()
        result = update_ticket_status(
            store, gmail, Sector.CHR, ticket_id, "closed",
            technician_notes="Carte remplacée", labels=LABELS,
            technician_name="Jean", content_generator=generator, sender="support@jdc.fr",
        )

        assert generator.call_args.args[2] == CaseType.CLOSURE
        assert gmail.sent[0][1] == "t1"
        assert _sent_body(gmail) == "<p>Généré</p>"
        assert gmail.thread_labels["t1"] == ["Label_C"]
        assert ticket_id not in fake_db.docs("CHR")
        archived = fake_db.docs("sap-archive")[result.archive_id]
        assert archived["originalTicketId"] == ticket_id
        assert archived["technician"] == "Jean"
        assert archived["closureReason"] == "resolved"

    def test_send_failure_propagates_and_keeps_ticket(self, store, ticket_id, fake_db):
        gmail = Mock()
        gmail.send.side_effect = TransientProviderError("quota", status=429)
        with pytest.raises(SendError):
            update_ticket_status(store, gmail, "CHR", ticket_id, "closed",
                                 technician_notes="ok", content_generator=_generator())
        assert ticket_id in fake_db.docs("CHR")
        assert fake_db.docs("sap-archive") == {}


class TestPending:

    def test_contact_attempt_and_no_response_label(self, store, gmail, ticket_id, fake_db):
        update_ticket_status(store, gmail, "CHR", ticket_id, "pending",
                             labels=LABELS, content_generator=_generator())
        update_ticket_status(store, gmail, "CHR", ticket_id, "pending",
                             labels=LABELS, content_generator=_generator())

        stored = fake_db.docs("CHR")[ticket_id]
        assert stored["status"] == "pending"
        assert len(stored["contactAttempts"]) == 2
        assert stored["contactAttempts"][0]["method"] == "phone"
        assert stored["contactAttempts"][0]["success"] is False
        assert gmail.thread_labels["t1"] == ["Label_N", "Label_N"]


class TestMaterial:

    def test_rma_reply_starts_with_mention(self, store, gmail, ticket_id, fake_db):
        update_ticket_status(store, gmail, "CHR", ticket_id, "rma_request",
                             technician_notes="Écran HS", material_type="Ecran",
                             material_details="Ecran 15 pouces", labels=LABELS,
                             content_generator=_generator("<p>Retour</p>"))

        assert _sent_body(gmail) == RMA_MENTION + "<p>Retour</p>"
        assert gmail.thread_labels["t1"] == ["Label_R"]
        stored = fake_db.docs("CHR")[ticket_id]
        assert stored["materialType"] == "Ecran"
        assert stored["status"] == "rma_request"

    def test_material_sent_uses_rma_label(self, store, gmail, ticket_id):
        generator = _generator()
        update_ticket_status(store, gmail, "CHR", ticket_id, "material_sent",
                             technician_notes="n", material_type="TPE", material_details="TPE Ingenico",
                             labels=LABELS, content_generator=generator)
        assert generator.call_args.args[2] == CaseType.MATERIAL
        assert gmail.thread_labels["t1"] == ["Label_R"]


class TestContentFallback:

    def test_generator_failure_uses_template(self, store, gmail, ticket_id, fake_db):
        generator = Mock(side_effect=RuntimeError("AI unavailable"))
        update_ticket_status(store, gmail, "CHR", ticket_id, "closed",
                             technician_notes="Imprimante nettoyée", content_generator=generator)

        body = _sent_body(gmail)
        assert "[CLÔTURE] Ticket 1234567" in body
        assert "Imprimante nettoyée" in body

    def test_no_generator_uses_template(self, store, gmail, ticket_id):
        update_ticket_status(store, gmail, "CHR", ticket_id, "pending")
        assert "[RELANCE] Ticket 1234567" in _sent_body(gmail)

    def test_template_escapes_notes(self):
        ticket = SectorTicket(sector=Sector.CHR, ticket_number="1", company_name="A&B")
        content = default_response_content(ticket, "closure", "<script>x</script>")
        assert "<script>" not in content
        assert "A&amp;B" in content


class TestWithoutReply:

    def test_missing_resolution_label_skipped(self, store, fake_gmail, ticket_id):
        result = update_ticket_status(store, fake_gmail, "CHR", ticket_id, "pending", labels=LABELS)
        assert result.reply_id == "sent1"
        assert result.label_id is None
        assert fake_gmail.thread_labels == {}

    def test_ticket_without_source_message(self, store, gmail, fake_db):
        _, ref = fake_db.collection("CHR").add({"ticketNumber": "7777777", "status": "open"})
        result = update_ticket_status(store, gmail, "CHR", ref.id, "pending")
        assert gmail.sent == []
        assert result.reply_id == ""
        assert fake_db.docs("CHR")[ref.id]["status"] == "pending"

    def test_plain_status_change(self, store, gmail, ticket_id, fake_db):
        result = update_ticket_status(store, gmail, "CHR", ticket_id, "open")
        assert gmail.sent == []
        assert result.status == "open"
        assert "aiSummary" not in fake_db.docs("CHR")[ticket_id]
