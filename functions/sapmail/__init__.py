"""
SAP Mail - support ticket ingestion from Gmail into Firestore
=============================================================

Modules:
- gmail_client: Gmail REST adapter (labels, messages, threads, send)
- message_parser: MIME body + envelope extraction
- field_extractor: ordered pattern rules for ticket fields
- ticket_store: ticket number normalization, dedup guard, ticket writer
- cleanup: post-run sweeps (sentinel + duplicate tickets)
- reply_composer: threaded RFC 2822 replies
- labels: resolution label applier
- orchestrator: per-sector ingestion run
- ticket_actions: status update side effects (reply, label, archive)

Usage:
    from sapmail.orchestrator import run
    from sapmail.config import load_processing_config

    report = run(credentials, load_processing_config(db), db)
"""

__version__ = "1.2.0"
