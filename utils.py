import json
import logging

import firebase_admin
import streamlit as st
from firebase_admin import credentials, firestore

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_KEYS = [
    "type", "project_id", "private_key_id", "private_key", "client_email", "client_id",
    "auth_uri", "token_uri", "auth_provider_x509_cert_url", "client_x509_cert_url",
]


class ConfigError(Exception):
    pass


# --- Configuration ---

def parse_firebase_config(raw):
    """Parses FIREBASE_CONFIG, given either as a JSON string or as a secrets table."""
    if isinstance(raw, str):
        # Fix for escaped newlines in the private key string
        raw = raw.replace('\\\\n', '\\n')
        raw = raw.strip().strip('"').strip("'")
        try:
            config = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"FIREBASE_CONFIG is not valid JSON: {e}") from e
    else:
        config = dict(raw)

    missing = [key for key in SERVICE_ACCOUNT_KEYS if not config.get(key)]
    if missing:
        raise ConfigError(f"FIREBASE_CONFIG is missing: {', '.join(missing)}")
    return config


def load_app_config(secrets):
    """Reads the Firebase service account, web API key and app URL from Streamlit secrets."""
    if "FIREBASE_CONFIG" not in secrets:
        raise ConfigError("FIREBASE_CONFIG not found in Streamlit secrets.")
    api_key = secrets.get("FIREBASE_WEB_API_KEY", "")
    if not api_key:
        raise ConfigError("FIREBASE_WEB_API_KEY not found in Streamlit secrets.")
    app_url = secrets.get("APP_URL", "")
    if not app_url:
        raise ConfigError("APP_URL not found in Streamlit secrets.")

    return {
        "firebase": parse_firebase_config(secrets["FIREBASE_CONFIG"]),
        "web_api_key": api_key,
        "app_url": app_url.rstrip("/"),
    }


# --- Firebase Initialization ---

@st.cache_resource
def initialize_firebase(config):
    """Initializes the Firebase app once per process and returns the Firestore client."""
    service_account_info = {key: config[key] for key in SERVICE_ACCOUNT_KEYS}
    service_account_info["universe_domain"] = config.get("universe_domain", "googleapis.com")

    if not firebase_admin._apps:
        cred = credentials.Certificate(service_account_info)
        firebase_admin.initialize_app(cred)
        logger.info("Firebase initialized for project %s", config["project_id"])

    return firestore.client()


# --- Firestore Data Paths ---

def get_app_root_ref(db, project_id):
    return db.collection('artifacts').document(project_id)


def get_goals_collection_ref(db, project_id):
    """Returns the Firestore reference for the goals collection (one document per owner and slot)."""
    return get_app_root_ref(db, project_id).collection('goals')


def get_entries_collection_ref(db, project_id):
    """Returns the Firestore reference for the reflection entries collection."""
    return get_app_root_ref(db, project_id).collection('entries')
