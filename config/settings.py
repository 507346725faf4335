"""Application configuration using Pydantic Settings."""

import json
import logging
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import List, Literal

PROJECT_ROOT = Path(__file__).parent.parent

CREDENTIALS_HELP = """
OAuth credentials not found. Please provide credentials using one of these methods:

1. CLI parameter:
   python server.py --credentials-file /path/to/gcp-oauth.keys.json

2. Environment variable:
   Set GOOGLE_OAUTH_CREDENTIALS_FILE to the path of your credentials file:
   export GOOGLE_OAUTH_CREDENTIALS_FILE="/path/to/gcp-oauth.keys.json"

3. Default file path:
   Place your gcp-oauth.keys.json file in the project root directory.

To get OAuth credentials:
1. Go to the Google Cloud Console (https://console.cloud.google.com/)
2. Create or select a project
3. Enable the Google Calendar API
4. Create OAuth 2.0 credentials
5. Download the credentials file as gcp-oauth.keys.json
""".strip()


class Settings(BaseSettings):
    """Application configuration using Pydantic Settings"""

    # Server Configuration
    server_name: str = "google-calendar"
    server_version: str = "1.3.0"
    server_host: str = "localhost"
    server_port: int = 3000
    transport: Literal["stdio", "http"] = "stdio"

    # Delegated credentials (acquired and refreshed outside this server)
    google_oauth_credentials_file: str = str(PROJECT_ROOT / "gcp-oauth.keys.json")
    token_file: str = str(PROJECT_ROOT / ".gcp-saved-tokens.json")
    calendar_scopes: List[str] = ["https://www.googleapis.com/auth/calendar"]

    # External call limits
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for any single Calendar API call, batch or not",
    )

    # Batch endpoint
    batch_endpoint: str = "https://www.googleapis.com/batch/calendar/v3"
    batch_max_retries: int = Field(default=3, ge=1, le=10)
    batch_initial_backoff_seconds: float = Field(default=1.0, ge=0)
    batch_max_backoff_seconds: float = Field(default=16.0, ge=0)

    # Logging (console always; a daily file only when log_to_file is set)
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = str(Path.home() / "logs" / "google_calendar_mcp")
    project_root: Path = PROJECT_ROOT

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def get_oauth_client_config(self) -> dict:
        """
        Load the OAuth client section of the keys file.

        Accepts both the "installed" and "web" layouts that the Google Cloud
        Console produces, as well as a flat file with client_id/client_secret.

        Raises:
            ValueError: If the file is missing or has no client credentials.
        """
        keys_path = Path(self.google_oauth_credentials_file)
        if not keys_path.exists():
            raise ValueError(CREDENTIALS_HELP)

        with open(keys_path, "r") as f:
            keys = json.load(f)

        client_config = keys.get("installed") or keys.get("web") or keys
        if not client_config.get("client_id") or not client_config.get("client_secret"):
            logging.error(f"OAuth keys file {keys_path} has no client_id/client_secret")
            raise ValueError(CREDENTIALS_HELP)

        return client_config


# Global settings instance
settings = Settings()
