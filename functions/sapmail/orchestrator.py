"""
Ingestion orchestrator
======================
Runs every enabled sector in turn:

    resolve labels -> list message ids -> per message:
        get -> extract body -> extract fields -> normalize -> dedup -> write -> label
    -> cleanup sweeps

Sectors and messages are processed sequentially. A failing message is logged
and counted, the sector goes on. A failure outside a message (listing, labels,
sweeps) is logged with the sector context and re-raised: the run stops there.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from .cleanup import sweep_not_found, sweep_duplicates
from .config import Sector
from .field_extractor import extract_fields
from .gmail_client import GmailClient
from .message_parser import extract_body, extract_envelope
from .ticket_store import TicketStore, TicketWriter, normalize_ticket_number

logger = logging.getLogger("sapmail.orchestrator")


class PipelineState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class MessageOutcome(Enum):
    CREATED = "created"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


@dataclass
class SectorReport:
    sector: str
    listed: int = 0
    created: int = 0
    rejected: int = 0
    duplicates: int = 0
    failed: int = 0
    swept_not_found: int = 0
    swept_duplicates: int = 0

    def count(self, outcome):
        if outcome == MessageOutcome.CREATED:
            self.created += 1
        elif outcome == MessageOutcome.REJECTED:
            self.rejected += 1
        elif outcome == MessageOutcome.DUPLICATE:
            self.duplicates += 1


@dataclass
class IngestionReport:
    sectors: List[SectorReport] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""

    @property
    def created(self):
        return sum(s.created for s in self.sectors)

    @property
    def failed(self):
        return sum(s.failed for s in self.sectors)

    def to_dict(self) -> Dict:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "created": self.created,
            "failed": self.failed,
            "sectors": [asdict(s) for s in self.sectors],
        }


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


class IngestionPipeline:
    """One ingestion run over the configured sectors."""

    def __init__(self, gmail, db, config, store: Optional[TicketStore] = None):
        self.gmail = gmail
        self.db = db
        self.config = config
        self.store = store or TicketStore(db)
        self.writer = TicketWriter(self.store, gmail, config.processed_label_name)
        self.state = PipelineState.IDLE
        self.current_sector: Optional[Sector] = None

    def run(self) -> IngestionReport:
        report = IngestionReport(started_at=_now_iso())
        sectors = self.config.enabled_sectors()
        logger.info(f"Ingestion started for sectors: {[s.value for s in sectors] or 'none'}")

        self.state = PipelineState.RUNNING
        try:
            for sector in sectors:
                self.current_sector = sector
                report.sectors.append(self.process_sector(sector))
        except Exception as e:
            last = self.current_sector.value if self.current_sector else "-"
            logger.error(
                f"Ingestion aborted in sector {last} "
                f"(configured: {[s.value for s in sectors]}): {e}"
            )
            raise
        finally:
            self.state = PipelineState.IDLE
            self.current_sector = None

        report.finished_at = _now_iso()
        logger.info(f"Ingestion finished: {report.created} created, {report.failed} failed")
        return report

    def process_sector(self, sector) -> SectorReport:
        sector = Sector.parse(sector)
        sector_config = self.config.sector(sector)
        report = SectorReport(sector=sector.value)

        label_ids = self.gmail.resolve_label_ids(sector_config.labels)
        if not label_ids:
            logger.warning(f"[{sector.value}] No source label resolved from {sector_config.labels}, nothing listed")
            message_ids = []
        else:
            message_ids = self.gmail.list_message_ids(label_ids, self.config.max_messages_per_run)
        report.listed = len(message_ids)
        logger.info(f"[{sector.value}] {len(message_ids)} message(s) to examine")

        for message_id in message_ids:
            try:
                report.count(self.process_message(message_id, sector))
            except Exception as e:
                report.failed += 1
                logger.error(f"[{sector.value}] Message {message_id} failed: {e}")

        report.swept_not_found = sweep_not_found(self.db, sector)
        report.swept_duplicates = sweep_duplicates(self.db, sector)

        logger.info(
            f"[{sector.value}] created={report.created} duplicates={report.duplicates} "
            f"rejected={report.rejected} failed={report.failed} "
            f"swept={report.swept_not_found + report.swept_duplicates}"
        )
        return report

    def process_message(self, message_id, sector) -> MessageOutcome:
        message = self.gmail.get_message(message_id)
        body = extract_body(message)
        fields = extract_fields(body)

        ticket_number = normalize_ticket_number(fields.ticket_number, sector)
        if not ticket_number:
            return MessageOutcome.REJECTED

        if self.store.exists(ticket_number, sector):
            # Left unlabelled: it will be listed again next run
            logger.info(f"[{sector.value}] Ticket {ticket_number} already stored, message {message_id} skipped")
            return MessageOutcome.DUPLICATE

        self.writer.write(fields, extract_envelope(message), ticket_number, sector)
        return MessageOutcome.CREATED


def run(auth_client, global_config, db=None) -> IngestionReport:
    """
    Single entry point for the scheduler / HTTP handler.

    Args:
        auth_client: google-auth credentials, or an already built mail client
        global_config: GlobalConfig
        db: Firestore client (default: firebase_admin's)
    """
    from google.auth.credentials import Credentials
    if isinstance(auth_client, Credentials):
        gmail = GmailClient.from_credentials(auth_client)
    else:
        gmail = auth_client
    if db is None:
        from firebase_admin import firestore
        db = firestore.client()
    return IngestionPipeline(gmail, db, global_config).run()
