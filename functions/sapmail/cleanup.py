"""
Post-ingestion hygiene for one sector collection.

Two sweeps, both confined to a single sector:
  1. sweep_not_found  -> delete tickets whose number is the NOT_FOUND sentinel
  2. sweep_duplicates -> keep the first ticket per number (insertion order),
                         delete every later one

Deletes go through write batches committed every BATCH_COMMIT_SIZE ops.
"""

import logging

from .collection_streamer import stream_collection
from .config import Sector
from .field_extractor import NOT_FOUND
from .values import scalar

logger = logging.getLogger("sapmail.cleanup")

BATCH_COMMIT_SIZE = 450

# Older documents store {"stringValue": ...} instead of the plain string
_TICKET_NUMBER_PATHS = ("ticketNumber", "ticketNumber.stringValue")


class _BatchDeleter:
    def __init__(self, db):
        self.db = db
        self.batch = db.batch()
        self.pending = 0
        self.deleted = 0

    def delete(self, reference):
        self.batch.delete(reference)
        self.pending += 1
        self.deleted += 1
        if self.pending >= BATCH_COMMIT_SIZE:
            self.flush()

    def flush(self):
        if self.pending:
            self.batch.commit()
            self.batch = self.db.batch()
            self.pending = 0


def sweep_not_found(db, sector):
    """Delete every ticket of the sector whose stored number is the sentinel. Returns the count."""
    sector = Sector.parse(sector)
    deleter = _BatchDeleter(db)
    seen = set()

    for path in _TICKET_NUMBER_PATHS:
        for doc in db.collection(sector.collection).where(path, "==", NOT_FOUND).get():
            if doc.id in seen:
                continue
            seen.add(doc.id)
            deleter.delete(doc.reference)
    deleter.flush()

    if deleter.deleted:
        logger.info(f"[{sector.value}] Removed {deleter.deleted} ticket(s) without a ticket number")
    return deleter.deleted


def sweep_duplicates(db, sector, batch_size=500):
    """
    Keep the oldest ticket per number, delete the others.

    Returns:
        number of deleted documents
    """
    sector = Sector.parse(sector)
    deleter = _BatchDeleter(db)
    first_seen = {}

    for docs in stream_collection(db, sector.collection, batch_size=batch_size):
        for doc in docs:
            number = scalar((doc.to_dict() or {}).get("ticketNumber"))
            if not number:
                continue
            if number in first_seen:
                logger.info(f"[{sector.value}] Duplicate ticket {number}: {doc.id} removed, "
                            f"{first_seen[number]} kept")
                deleter.delete(doc.reference)
            else:
                first_seen[number] = doc.id
    deleter.flush()
    return deleter.deleted


def sweep_sector(db, sector):
    """Run both sweeps. Returns (not_found_deleted, duplicates_deleted)."""
    return sweep_not_found(db, sector), sweep_duplicates(db, sector)
