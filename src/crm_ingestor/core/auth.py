"""Google OAuth for the CRM: one token covering mailbox labeling and spreadsheet writes."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from crm_ingestor.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

# gmail.modify is needed to apply the done/error status labels.
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/spreadsheets",
]


def _load_cached(token_path: Path) -> Credentials | None:
    """Cached credentials, or None when missing, unreadable or short of a scope."""
    if not token_path.exists():
        return None
    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (ValueError, OSError) as e:
        logger.warning("Ignoring unreadable token cache %s: %s", token_path, e)
        return None
    if not creds.has_scopes(SCOPES):
        # Tokens granted for a narrower app (e.g. Gmail read-only) cannot write labels or rows.
        logger.warning("Cached token lacks CRM scopes, consent is needed again")
        return None
    return creds


def authenticate(
    credentials_path: Path, token_path: Path, *, interactive: bool = True
) -> Credentials:
    """Return credentials for Gmail and Sheets, refreshing or re-consenting as needed.

    With ``interactive=False`` (scheduled runs) a missing or revoked token is
    an error instead of opening a browser for consent.

    Raises:
        AuthenticationError: If no usable credentials can be obtained.
    """
    creds = _load_cached(token_path)
    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(Request())
            _save_token(creds, token_path)
            return creds
        except GoogleAuthError as e:
            logger.warning("Token refresh failed: %s", e)

    if not interactive:
        raise AuthenticationError(
            f"No valid token at {token_path}; run an interactive command once to grant access"
        )
    if not credentials_path.exists():
        raise AuthenticationError(
            f"Credentials file not found: {credentials_path}. "
            "Download the OAuth client from Google Cloud Console."
        )

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"OAuth flow failed: {e}") from e
    _save_token(creds, token_path)
    logger.info("Access granted, token cached at %s", token_path)
    return creds


def build_gmail_service(creds: Credentials) -> Resource:
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def build_sheets_service(creds: Credentials) -> Resource:
    return build("sheets", "v4", credentials=creds, cache_discovery=False)


def _save_token(creds: Credentials, token_path: Path) -> None:
    """Write the token cache, readable by the owner only."""
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
    token_path.chmod(0o600)
