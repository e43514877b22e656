"""
JDC SAP Mail Cloud Functions
============================
HTTP entry points around the sapmail package.

Functions:
1. gmail_to_firestore - called by the external scheduler, ingests SAP mails
2. ticket_status      - called by the web app when a technician changes a ticket status
"""

import firebase_admin
from firebase_admin import auth, firestore
from firebase_functions import https_fn, options
import hmac
import json
import os

from sapmail.config import get_secret, load_processing_config, load_user_profile, ResolutionLabels
from sapmail.errors import SendError, TicketActionError
from sapmail.gmail_client import GmailClient
from sapmail.orchestrator import run
from sapmail.ticket_actions import update_ticket_status
from sapmail.ticket_store import TicketStore

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.labels",
]
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Initialize Firebase
firebase_admin.initialize_app()
db = None


def get_db():
    global db
    if db is None:
        db = firestore.client()
    return db


def _json_response(payload, status=200):
    return https_fn.Response(json.dumps(payload, default=str), status=status,
                             content_type="application/json")


def get_gmail_credentials():
    """OAuth2 user credentials for the support mailbox, refreshed on first use."""
    from google.oauth2.credentials import Credentials

    refresh_token = get_secret("GMAIL_REFRESH_TOKEN")
    client_id = get_secret("GMAIL_CLIENT_ID")
    client_secret = get_secret("GMAIL_CLIENT_SECRET")
    if not (refresh_token and client_id and client_secret):
        raise RuntimeError("Gmail OAuth secrets missing")
    return Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
        token_uri=TOKEN_URI,
        scopes=GMAIL_SCOPES,
    )


def _api_key_ok(req):
    expected = get_secret("SCHEDULED_TASKS_API_KEY")
    provided = req.headers.get("x-api-key") or ""
    return bool(expected) and hmac.compare_digest(provided.encode(), expected.encode())


def _caller_uid(req):
    """uid from a Firebase ID token in `Authorization: Bearer <token>`, None if absent or invalid."""
    header = req.headers.get("Authorization") or ""
    if not header.startswith("Bearer "):
        return None
    try:
        return auth.verify_id_token(header[len("Bearer "):])["uid"]
    except (ValueError, auth.InvalidIdTokenError, auth.CertificateFetchError) as e:
        print(f"Rejected ID token: {e}")
        return None


# ============================================================
# FUNCTION 1: GMAIL -> FIRESTORE INGESTION
# ============================================================
@https_fn.on_request(region="europe-west1", timeout_sec=540)
def gmail_to_firestore(req: https_fn.Request) -> https_fn.Response:
    """Scheduled ingestion of labelled SAP notification mails."""
    if req.method != "POST":
        return _json_response({"success": False, "error": "Method not allowed"}, status=405)
    if not _api_key_ok(req):
        print("gmail_to_firestore: rejected, bad or missing x-api-key")
        return _json_response({"success": False, "error": "Unauthorized"}, status=401)

    try:
        config = load_processing_config(get_db())
        gmail = GmailClient.from_credentials(get_gmail_credentials())
        report = run(gmail, config, db=get_db())
    except Exception as e:
        print(f"gmail_to_firestore failed: {e}")
        return _json_response({"success": False, "error": str(e)}, status=500)

    print(f"gmail_to_firestore done: {report.created} created, {report.failed} failed")
    return _json_response({"success": True, "report": report.to_dict()})


# ============================================================
# FUNCTION 2: TICKET STATUS UPDATE (reply + label + archive)
# ============================================================
@https_fn.on_request(region="europe-west1",
                     cors=options.CorsOptions(cors_origins="*", cors_methods=["POST"]))
def ticket_status(req: https_fn.Request) -> https_fn.Response:
    """Change a ticket status and run its reply / label / archive side effects."""
    if req.method != "POST":
        return _json_response({"success": False, "error": "Method not allowed"}, status=405)

    # Web app users send a Firebase ID token, server callers the API key
    uid = _caller_uid(req)
    if uid is None and not _api_key_ok(req):
        print("ticket_status: rejected, no valid ID token or x-api-key")
        return _json_response({"success": False, "error": "Unauthorized"}, status=401)

    data = req.get_json(silent=True) or {}
    sector_id = data.get("sectorId")
    ticket_id = data.get("ticketId")
    if not sector_id or not ticket_id or not data.get("status"):
        return _json_response({"success": False, "error": "sectorId, ticketId and status are required"}, status=400)

    profile = load_user_profile(get_db(), uid or data.get("userId"))
    try:
        gmail = GmailClient.from_credentials(get_gmail_credentials())
        result = update_ticket_status(
            TicketStore(get_db()),
            gmail,
            sector_id,
            ticket_id,
            data["status"],
            technician_notes=data.get("technicianNotes"),
            material_type=data.get("materialType"),
            material_details=data.get("materialDetails"),
            labels=ResolutionLabels.from_profile(profile),
            technician_name=profile.get("displayName", ""),
            sender=os.environ.get("GMAIL_SENDER") or gmail.get_profile_email(),
        )
    except TicketActionError as e:
        return _json_response({"success": False, "error": str(e)}, status=400)
    except SendError as e:
        print(f"ticket_status: reply failed for {sector_id}/{ticket_id}: {e}")
        return _json_response({"success": False, "error": str(e)}, status=502)
    except Exception as e:
        print(f"ticket_status failed for {sector_id}/{ticket_id}: {e}")
        return _json_response({"success": False, "error": str(e)}, status=500)

    return _json_response({"success": True, "result": result.to_dict()})
