"""
Gmail REST adapter.

Thin wrapper over https://gmail.googleapis.com/gmail/v1/users/me with an
authorized requests session. Provider errors are raised, never swallowed:
callers decide what a failure means for them.

Usage:
    gmail = GmailClient.from_credentials(credentials)
    ids = gmail.list_message_ids(gmail.resolve_label_ids(["SAP-CHR"]), limit=50)
"""

import logging
import time

import requests

from .errors import MailProviderError, TransientProviderError
from .retry import call_with_backoff, DEFAULT_ATTEMPTS

logger = logging.getLogger("sapmail.gmail")

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"
DEFAULT_TIMEOUT = 30

TRANSIENT_STATUSES = {429, 500, 502, 503, 504}
TRANSIENT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded", "backendError"}
MAX_PAGE_SIZE = 500


def _provider_error(method, path, response):
    """Build the right exception for a non-2xx Gmail response."""
    reason = None
    message = response.text[:300] if response.text else ""
    try:
        error = response.json().get("error", {})
        message = error.get("message") or message
        errors = error.get("errors") or []
        if errors:
            reason = errors[0].get("reason")
    except ValueError:
        pass

    text = f"Gmail {method} {path} failed ({response.status_code}): {message}"
    if response.status_code in TRANSIENT_STATUSES or reason in TRANSIENT_REASONS:
        return TransientProviderError(text, status=response.status_code, reason=reason)
    return MailProviderError(text, status=response.status_code, reason=reason)


class GmailClient:
    """Label, message, thread and send capabilities for one mailbox."""

    def __init__(self, session, timeout=DEFAULT_TIMEOUT, retry_attempts=DEFAULT_ATTEMPTS,
                 sleep=time.sleep):
        self.session = session
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self._sleep = sleep
        self._labels = None

    @classmethod
    def from_credentials(cls, credentials, **kwargs):
        """Wrap google-auth credentials in an AuthorizedSession."""
        from google.auth.transport.requests import AuthorizedSession
        return cls(AuthorizedSession(credentials), **kwargs)

    # ── transport ────────────────────────────────────────────

    def _request(self, method, path, **kwargs):
        url = f"{GMAIL_API}/{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientProviderError(f"Gmail {method} {path}: {e}") from e

        if response.status_code >= 400:
            raise _provider_error(method, path, response)
        if not response.content:
            return {}
        return response.json()

    def _with_backoff(self, func, *args, **kwargs):
        return call_with_backoff(func, *args, attempts=self.retry_attempts,
                                 sleep=self._sleep, **kwargs)

    def get_profile_email(self):
        """Address of the authenticated mailbox."""
        return self._request("GET", "profile").get("emailAddress", "")

    # ── labels ───────────────────────────────────────────────

    def list_labels(self, refresh=False):
        """All mailbox labels as {name: id}; cached per client."""
        if self._labels is None or refresh:
            data = self._request("GET", "labels")
            self._labels = {
                l["name"]: l["id"] for l in data.get("labels", []) if l.get("name") and l.get("id")
            }
        return self._labels

    def find_label_id(self, name):
        """Label id for name, or None. Never creates."""
        if not name:
            return None
        return self.list_labels().get(name)

    def resolve_label_ids(self, names):
        """Ids for the given label names; unknown names are skipped with a warning."""
        labels = self.list_labels()
        ids = []
        for name in names or []:
            label_id = labels.get(name)
            if label_id is None:
                logger.warning(f"Label '{name}' not found in mailbox, skipped")
                continue
            ids.append(label_id)
        return ids

    def create_label(self, name):
        body = {
            "name": name,
            "labelListVisibility": "labelShow",
            "messageListVisibility": "show",
        }
        created = self._request("POST", "labels", json=body)
        if self._labels is not None:
            self._labels[created["name"]] = created["id"]
        logger.info(f"Created label '{name}' ({created['id']})")
        return created["id"]

    def ensure_label(self, name):
        """Label id for name, creating the label when absent."""
        label_id = self.find_label_id(name)
        if label_id:
            return label_id
        return self.create_label(name)

    # ── messages / threads ───────────────────────────────────

    def list_message_ids(self, label_ids, limit):
        """Ids of messages carrying every label in label_ids, newest first, at most limit."""
        return self._with_backoff(self._list_message_ids, label_ids, limit)

    def _list_message_ids(self, label_ids, limit):
        ids = []
        page_token = None
        while len(ids) < limit:
            params = {
                "labelIds": list(label_ids),
                "maxResults": min(limit - len(ids), MAX_PAGE_SIZE),
            }
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", "messages", params=params)
            ids.extend(m["id"] for m in data.get("messages", []) if m.get("id"))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return ids[:limit]

    def get_message(self, message_id):
        """Full message resource (payload tree, headers, threadId)."""
        return self._request("GET", f"messages/{message_id}", params={"format": "full"})

    def modify_message(self, message_id, add_label_ids):
        return self._with_backoff(
            self._request, "POST", f"messages/{message_id}/modify",
            json={"addLabelIds": list(add_label_ids)},
        )

    def modify_thread(self, thread_id, add_label_ids):
        return self._with_backoff(
            self._request, "POST", f"threads/{thread_id}/modify",
            json={"addLabelIds": list(add_label_ids)},
        )

    def apply_label(self, target_id, label_id, thread=False):
        """Attach label_id to a message, or to a whole thread when thread=True."""
        if thread:
            return self.modify_thread(target_id, [label_id])
        return self.modify_message(target_id, [label_id])

    def send(self, raw, thread_id=None):
        """
        Send a base64url-encoded RFC 2822 message.

        thread_id makes Gmail file the message in the original conversation
        even if the threading headers are off.

        Returns:
            id of the sent message
        """
        body = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        sent = self._with_backoff(self._request, "POST", "messages/send", json=body)
        return sent.get("id", "")
