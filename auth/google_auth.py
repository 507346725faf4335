"""
Delegated Google credentials for the calendar server.

The OAuth consent flow runs outside this server; it leaves a saved token
file behind. This module loads that token, refreshes it when expired and
writes the refreshed token back. It never starts a new OAuth flow.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from typing_extensions import Any, Dict, Optional

from config.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleAuthError(Exception):
    """Custom exception for Google authentication errors."""
    pass


def _token_path() -> Path:
    return Path(settings.token_file)


def _read_token_file(token_path: Path) -> Optional[Dict[str, Any]]:
    if not token_path.exists():
        logger.debug(f"No saved token file at {token_path}")
        return None

    try:
        with open(token_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Corrupt token file {token_path}: Invalid JSON - {e}")
        raise GoogleAuthError(f"Saved token file {token_path} is not valid JSON") from e

    # Older token files nest the user token under "normal"
    if isinstance(data, dict) and "normal" in data and isinstance(data["normal"], dict):
        data = data["normal"]
    return data


def _save_credentials(credentials: Credentials) -> None:
    """Write refreshed credentials back with owner-only permissions."""
    token_path = _token_path()
    token_data = {
        "token": credentials.token,
        "access_token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "token_uri": credentials.token_uri,
        "client_id": credentials.client_id,
        "client_secret": credentials.client_secret,
        "scopes": credentials.scopes,
        "expiry": credentials.expiry.isoformat() if credentials.expiry else None,
        "saved_at": datetime.now().isoformat(),
    }

    try:
        token_path.parent.mkdir(parents=True, exist_ok=True)
        with open(token_path, "w") as f:
            json.dump(token_data, f, indent=2)
        os.chmod(token_path, 0o600)
        logger.debug(f"Saved refreshed token to {token_path}")
    except OSError as e:
        logger.warning(f"Could not persist refreshed token to {token_path}: {e}")


def _load_credentials() -> Optional[Credentials]:
    """Build Credentials from the saved token file, or None if there is none."""
    token_data = _read_token_file(_token_path())
    if not token_data:
        return None

    access_token = token_data.get("token") or token_data.get("access_token")
    refresh_token = token_data.get("refresh_token")
    if not access_token and not refresh_token:
        logger.error("Saved token file has neither an access token nor a refresh token")
        return None

    client_id = token_data.get("client_id")
    client_secret = token_data.get("client_secret")
    if not client_id or not client_secret:
        try:
            oauth_config = settings.get_oauth_client_config()
        except ValueError:
            oauth_config = {}
        client_id = client_id or oauth_config.get("client_id")
        client_secret = client_secret or oauth_config.get("client_secret")

    credentials = Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=token_data.get("token_uri", DEFAULT_TOKEN_URI),
        client_id=client_id,
        client_secret=client_secret,
        scopes=token_data.get("scopes") or settings.calendar_scopes,
    )

    expiry = token_data.get("expiry")
    if expiry:
        try:
            # google-auth compares expiry against a naive UTC datetime
            parsed = datetime.fromisoformat(expiry.replace("Z", "+00:00"))
            if parsed.tzinfo is not None:
                parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
            credentials.expiry = parsed
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid expiry in saved token: {e}")

    return credentials


def _refresh_credentials(credentials: Credentials) -> Credentials:
    """Refresh expired credentials and persist the new token."""
    if not credentials.refresh_token:
        raise GoogleAuthError(
            "Saved Google token has expired and has no refresh token. Please re-authenticate."
        )

    try:
        credentials.refresh(Request())
    except RefreshError as e:
        error_str = str(e)
        logger.error(f"Token refresh failed: {error_str}")
        if "invalid_grant" in error_str.lower():
            raise GoogleAuthError(
                "Refresh token is invalid or expired. Please re-authenticate."
            ) from e
        if "invalid_client" in error_str.lower():
            raise GoogleAuthError(
                "OAuth client configuration is invalid. Check your gcp-oauth.keys.json file."
            ) from e
        raise GoogleAuthError(f"Failed to refresh credentials: {e}") from e

    _save_credentials(credentials)
    logger.info("Successfully refreshed Google credentials")
    return credentials


def get_valid_credentials() -> Credentials:
    """
    Return usable credentials, refreshing them when expired.

    Raises:
        GoogleAuthError: No saved token, or the token cannot be refreshed.
    """
    credentials = _load_credentials()
    if credentials is None:
        raise GoogleAuthError(
            f"No saved Google token found at {settings.token_file}. "
            f"Please authenticate with Google first."
        )

    if not credentials.valid:
        credentials = _refresh_credentials(credentials)

    return credentials
