"""
Processing configuration for the Gmail -> Firestore ingestion.

The settings document (settings/gmailProcessingConfig) is owned by the admin
UI; this module only reads it. Shape:

    {
        "maxEmailsPerRun": 50,
        "processedLabelName": "Traité",
        "sectorCollections": {
            "chr": {"enabled": true, "labels": ["SAP-CHR"], "responsables": ["uid1"]},
            "kezia": false,
            ...
        }
    }
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger("sapmail.config")

PROJECT_ID = os.environ.get("GCP_PROJECT_ID", "jdc-portal")
SETTINGS_COLLECTION = os.environ.get("SETTINGS_COLLECTION", "settings")
SETTINGS_DOCUMENT = "gmailProcessingConfig"
ARCHIVE_COLLECTION = os.environ.get("ARCHIVE_COLLECTION", "sap-archive")
USERS_COLLECTION = "users"

DEFAULT_MAX_MESSAGES = 50
DEFAULT_PROCESSED_LABEL = "Traité"


class Sector(str, Enum):
    """Business line. The value is the Firestore collection name."""
    KEZIA = "Kezia"
    HACCP = "HACCP"
    CHR = "CHR"
    TABAC = "Tabac"

    @property
    def config_key(self):
        return self.name.lower()

    @property
    def collection(self):
        return self.value

    @classmethod
    def parse(cls, raw):
        """Accept a config key ("chr"), a collection name ("CHR") or a Sector."""
        if isinstance(raw, cls):
            return raw
        text = str(raw or "").strip()
        for sector in cls:
            if text.lower() in (sector.config_key, sector.value.lower()):
                return sector
        raise ValueError(f"Unknown sector: {raw!r}")


@dataclass
class SectorConfig:
    enabled: bool = False
    labels: List[str] = field(default_factory=list)
    responsibles: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw):
        if isinstance(raw, bool):
            return cls(enabled=raw)
        if not isinstance(raw, dict):
            return cls()
        return cls(
            enabled=bool(raw.get("enabled", False)),
            labels=[str(l) for l in (raw.get("labels") or []) if l],
            responsibles=[str(r) for r in (raw.get("responsables") or []) if r],
        )


@dataclass
class GlobalConfig:
    max_messages_per_run: int = DEFAULT_MAX_MESSAGES
    processed_label_name: str = DEFAULT_PROCESSED_LABEL
    sectors: Dict[Sector, SectorConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw):
        raw = raw or {}
        sectors_raw = raw.get("sectorCollections") or {}
        sectors = {}
        for sector in Sector:
            sectors[sector] = SectorConfig.from_dict(sectors_raw.get(sector.config_key))
        return cls(
            max_messages_per_run=_positive_int(raw.get("maxEmailsPerRun"), DEFAULT_MAX_MESSAGES),
            processed_label_name=(raw.get("processedLabelName") or DEFAULT_PROCESSED_LABEL).strip(),
            sectors=sectors,
        )

    def enabled_sectors(self):
        """Sectors to process, in declaration order."""
        return [s for s in Sector if self.sectors.get(s, SectorConfig()).enabled]

    def sector(self, sector):
        return self.sectors.get(Sector.parse(sector), SectorConfig())


@dataclass
class ResolutionLabels:
    """Gmail label names applied after a reply, taken from the user profile."""
    closed: str = ""
    no_response: str = ""
    rma: str = ""

    @classmethod
    def from_profile(cls, profile):
        profile = profile or {}
        return cls(
            closed=profile.get("labelSapClosed") or "",
            no_response=profile.get("labelSapNoResponse") or "",
            rma=profile.get("labelSapRma") or "",
        )


def _positive_int(value, default):
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid maxEmailsPerRun {value!r}, using {default}")
        return default
    if number <= 0:
        logger.warning(f"Non-positive maxEmailsPerRun {number}, using {default}")
        return default
    return number


def load_processing_config(db):
    """Read GlobalConfig from Firestore; defaults if the document is missing."""
    snapshot = db.collection(SETTINGS_COLLECTION).document(SETTINGS_DOCUMENT).get()
    if not snapshot.exists:
        logger.warning(f"{SETTINGS_COLLECTION}/{SETTINGS_DOCUMENT} missing, using defaults")
        return GlobalConfig.from_dict({})
    return GlobalConfig.from_dict(snapshot.to_dict())


def load_user_profile(db, user_id):
    """users/{uid} document as a dict, {} when unknown."""
    if not user_id:
        return {}
    snapshot = db.collection(USERS_COLLECTION).document(user_id).get()
    if not snapshot.exists:
        logger.warning(f"User profile {user_id} not found")
        return {}
    return snapshot.to_dict() or {}


def get_secret(name) -> Optional[str]:
    """Secret Manager lookup, falling back to an environment variable."""
    try:
        from google.cloud import secretmanager
        client = secretmanager.SecretManagerServiceClient()
        secret_path = f"projects/{PROJECT_ID}/secrets/{name}/versions/latest"
        response = client.access_secret_version(request={"name": secret_path})
        return response.payload.data.decode("UTF-8")
    except Exception as e:
        logger.warning(f"Secret {name} unavailable from Secret Manager: {e}")
        return os.environ.get(name)
