# Configuration for Order Sheet Sync

import json
import os
from pathlib import Path
from pydantic import BaseModel
from rich.console import Console

console = Console()

PROJECT_DIR = Path(__file__).parent.parent

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Columns expected in the Google Sheet (in order)
# Every appended line is written in exactly this order, blanks for missing fields
ROW_COLUMNS = [
    "first",
    "last",
    "nametag",
    "email",
    "phone",
    "address",
    "city",
    "state",
    "zip",
    "country",
    "volunteer",
    "share",
    "comments",
    "admissionQuantity",
    "admissionCost",
    "donation",
    "total",
    "deposit",
    "owed",
    "purchaser",
    "createdAt",
    "paypalEmail",
]


class Settings(BaseModel):
    client_id: str = ""
    client_secret: str = ""
    spreadsheet_id: str = ""
    redirect_base_url: str = ""
    data_path: str = "/orders"
    token_path: str = "/api_tokens"
    token_file: str = "config/api_tokens.json"
    database_url: str = ""
    append_range: str = "A:M"
    timezone: str = "UTC"

    @property
    def redirect_uri(self) -> str:
        base_url = self.redirect_base_url
        if not base_url and os.environ.get("GCLOUD_PROJECT"):
            # Firebase Hosting default domain for the project
            base_url = f"https://{os.environ['GCLOUD_PROJECT']}.firebaseapp.com"
        return f"{base_url.rstrip('/')}/oauthcallback"


def load_settings(config_path: str | None = None) -> Settings:
    """
    Loads settings from config/settings.json or falls back to the example file.
    Any key can be overridden with an ORDERSYNC_<KEY> environment variable.
    """
    config_path = Path(config_path or os.environ.get("ORDERSYNC_CONFIG") or PROJECT_DIR / "config/settings.json")
    example_path = PROJECT_DIR / "config/settings.example.json"

    config = {}
    if config_path.exists():
        with open(config_path, 'r') as f:
            config = json.load(f)
    elif example_path.exists():
        console.print(f"[yellow]Warning: {config_path} not found. Using example settings.[/yellow]")
        with open(example_path, 'r') as f:
            config = json.load(f)

    for key in Settings.model_fields:
        value = os.environ.get(f"ORDERSYNC_{key.upper()}")
        if value is not None:
            config[key] = value

    return Settings(**config)
