"""
Pytest Configuration and Shared Fixtures
"""
import base64
import itertools
import pytest
from unittest.mock import Mock, MagicMock
import sys
import os

# Add functions directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from firebase_admin import firestore


# ============================================================
# IN-MEMORY FIRESTORE
# ============================================================

def _get_path(data, path):
    value = data
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db, collection_name, doc_id):
        self._db = db
        self.collection_name = collection_name
        self.id = doc_id

    def _store(self):
        return self._db.data.setdefault(self.collection_name, {})

    def get(self):
        return FakeSnapshot(self, self._store().get(self.id))

    def set(self, data):
        self._store()[self.id] = self._db.resolve(data)

    def update(self, data):
        current = self._store()[self.id]
        for key, value in data.items():
            if isinstance(value, firestore.ArrayUnion):
                existing = list(current.get(key) or [])
                current[key] = existing + [v for v in value.values if v not in existing]
            else:
                current[key] = self._db.resolve({key: value})[key]

    def delete(self):
        self._store().pop(self.id, None)


class FakeQuery:
    def __init__(self, db, collection_name, filters=(), order=None, limit=None, after=None):
        self._db = db
        self.collection_name = collection_name
        self._filters = tuple(filters)
        self._order = order
        self._limit = limit
        self._after = after

    def _copy(self, **changes):
        params = dict(filters=self._filters, order=self._order, limit=self._limit, after=self._after)
        params.update(changes)
        return FakeQuery(self._db, self.collection_name, **params)

    def where(self, field_path, op, value):
        assert op == "==", "only equality filters are supported"
        return self._copy(filters=self._filters + ((field_path, value),))

    def order_by(self, field_path):
        return self._copy(order=field_path)

    def limit(self, count):
        return self._copy(limit=count)

    def start_after(self, snapshot):
        return self._copy(after=snapshot)

    def get(self):
        self._db.query_count += 1
        store = self._db.data.get(self.collection_name, {})
        rows = [
            (doc_id, data) for doc_id, data in store.items()
            if all(_get_path(data, path) == value for path, value in self._filters)
        ]
        if self._order:
            rows = [r for r in rows if _get_path(r[1], self._order) is not None]
            rows.sort(key=lambda r: (_get_path(r[1], self._order), r[0]))
        if self._after is not None:
            # cursor on the snapshot values, so it survives deletion of that document
            cursor = (_get_path(self._after.to_dict(), self._order), self._after.id)
            rows = [r for r in rows if (_get_path(r[1], self._order), r[0]) > cursor]
        if self._limit is not None:
            rows = rows[:self._limit]
        return [FakeSnapshot(FakeDocumentRef(self._db, self.collection_name, doc_id), data)
                for doc_id, data in rows]

    def stream(self):
        return iter(self.get())


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocumentRef(self._db, self.collection_name, doc_id or self._db.next_id())

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self._deletes = []

    def delete(self, reference):
        self._deletes.append(reference)

    def commit(self):
        self._db.commits += 1
        for reference in self._deletes:
            reference.delete()
        self._deletes = []


class FakeFirestore:
    """Dict-backed stand-in for the subset of the Firestore client the pipeline uses."""

    def __init__(self):
        self.data = {}
        self.commits = 0
        self.query_count = 0
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def next_id(self):
        return f"doc{next(self._ids):04d}"

    def resolve(self, data):
        """Replace SERVER_TIMESTAMP with a monotonically increasing value."""
        return {
            k: (next(self._clock) if v is firestore.SERVER_TIMESTAMP else v)
            for k, v in data.items()
        }

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch(self)

    def docs(self, name):
        return self.data.get(name, {})


@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def mock_db():
    """Create a mock Firestore database"""
    db = Mock()
    return db


@pytest.fixture
def mock_firestore_doc():
    """Create a mock Firestore document"""
    def _create(doc_id, data):
        doc = Mock()
        doc.id = doc_id
        doc.to_dict.return_value = data
        doc.reference = Mock()
        return doc
    return _create


# ============================================================
# GMAIL
# ============================================================

def b64url(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_gmail_message(message_id, thread_id="t1", html=None, plain=None, headers=None):
    """Gmail format=full resource with a multipart/alternative payload."""
    parts = []
    if plain is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": b64url(plain)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}})
    header_list = [{"name": k, "value": v} for k, v in (headers or {}).items()]
    return {
        "id": message_id,
        "threadId": thread_id,
        "payload": {"mimeType": "multipart/alternative", "headers": header_list, "parts": parts},
    }


class FakeGmail:
    """In-memory mailbox exposing the GmailClient surface used by the pipeline."""

    def __init__(self, labels=None):
        self.labels = dict(labels or {})
        self.messages = {}
        self.message_labels = {}
        self.thread_labels = {}
        self.sent = []
        self.created_labels = []

    def add_message(self, message, label_names=()):
        self.messages[message["id"]] = message
        self.message_labels[message["id"]] = [self.labels[n] for n in label_names]

    def list_labels(self, refresh=False):
        return self.labels

    def find_label_id(self, name):
        return self.labels.get(name)

    def resolve_label_ids(self, names):
        return [self.labels[n] for n in names if n in self.labels]

    def ensure_label(self, name):
        if name not in self.labels:
            self.labels[name] = f"Label_{len(self.labels) + 1}"
            self.created_labels.append(name)
        return self.labels[name]

    def list_message_ids(self, label_ids, limit):
        ids = [mid for mid, labels in self.message_labels.items()
               if all(l in labels for l in label_ids)]
        return ids[:limit]

    def get_message(self, message_id):
        return self.messages[message_id]

    def apply_label(self, target_id, label_id, thread=False):
        if thread:
            self.thread_labels.setdefault(target_id, []).append(label_id)
        else:
            self.message_labels.setdefault(target_id, []).append(label_id)
        return {}

    def send(self, raw, thread_id=None):
        self.sent.append((raw, thread_id))
        return f"sent{len(self.sent)}"

    def labels_of(self, message_id):
        by_id = {v: k for k, v in self.labels.items()}
        return [by_id.get(l, l) for l in self.message_labels.get(message_id, [])]


@pytest.fixture
def fake_gmail():
    return FakeGmail(labels={"SAP-CHR": "Label_10", "SAP-HACCP": "Label_11"})


@pytest.fixture
def mock_gmail():
    return MagicMock()


# ============================================================
# SAMPLE BODIES
# ============================================================

@pytest.fixture
def sap_body():
    """Flattened SAP notification as produced by the body extractor."""
    return (
        "Notification SAP Numéro *9998887* Raison Sociale * ACME Corp * "
        "Enseigne SuperMart Grand Compte NON Client 45678 "
        "Adresse 12 rue de la Paix 75002 Paris Téléphone 1 06 12 34 56 78 "
        "Téléphone 2 01.44.55.66.77 Email contact@acme.fr "
        "Date mardi 4 mars 2025 Commentaires Imprimante ticket en panne depuis ce matin"
    )
