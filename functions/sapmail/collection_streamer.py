"""
Stream a sector collection in insertion order, batch by batch.

Never load a whole sector with .get(): the sweeps page through with
order_by("createdAt") + start_after, so memory stays bounded by batch_size.
Documents without createdAt are not returned by an ordered query.
"""

import logging

logger = logging.getLogger("sapmail.collection_streamer")

ORDER_FIELD = "createdAt"


def _base_query(db, collection_name, where_clauses):
    query = db.collection(collection_name)
    for field_path, op, value in where_clauses or []:
        query = query.where(field_path, op, value)
    return query.order_by(ORDER_FIELD)


def stream_collection(db, collection_name, batch_size=500, where_clauses=None):
    """
    Yields lists of document snapshots, oldest first.

    Args:
        db: Firestore client
        collection_name: str
        batch_size: int (default 500)
        where_clauses: list of (field, op, value) tuples

    Usage::

        for batch in stream_collection(db, "CHR"):
            for doc in batch:
                seen.add(doc.to_dict()["ticketNumber"])
    """
    query = _base_query(db, collection_name, where_clauses).limit(batch_size)

    while True:
        docs = list(query.get())
        if not docs:
            break

        yield docs

        if len(docs) < batch_size:
            break
        query = _base_query(db, collection_name, where_clauses).start_after(docs[-1]).limit(batch_size)
