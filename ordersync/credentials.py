import asyncio
import json
from pathlib import Path

import firebase_admin
import gspread
from firebase_admin import db
from google.oauth2.credentials import Credentials
from rich.console import Console

from ordersync.config import PROJECT_DIR, SCOPES, TOKEN_URI, Settings
from ordersync.errors import MissingCredentials
from ordersync.models import CredentialSet

console = Console()


def init_firebase(database_url: str):
    """Initializes the default Firebase app once per process."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        return firebase_admin.initialize_app(options={"databaseURL": database_url})


class FirebaseTokenStore:
    """Keeps the token set at a fixed path in the Realtime Database."""

    def __init__(self, path: str = "/api_tokens"):
        self.path = path

    def load(self) -> CredentialSet | None:
        data = db.reference(self.path).get()
        if not data:
            return None
        return CredentialSet.model_validate(data)

    def save(self, credential_set: CredentialSet):
        db.reference(self.path).set(credential_set.to_record())


class JsonFileTokenStore:
    """Keeps the token set in a local JSON file, for running without Firebase."""

    def __init__(self, path):
        self.path = Path(path)

    def load(self) -> CredentialSet | None:
        if not self.path.exists():
            return None
        with open(self.path, 'r') as f:
            return CredentialSet.model_validate(json.load(f))

    def save(self, credential_set: CredentialSet):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(credential_set.to_record(), f, indent=2)


def build_token_store(settings: Settings):
    if settings.database_url:
        init_firebase(settings.database_url)
        return FirebaseTokenStore(settings.token_path)

    token_file = Path(settings.token_file)
    if not token_file.is_absolute():
        token_file = PROJECT_DIR / token_file
    return JsonFileTokenStore(token_file)


class CredentialCache:
    """
    Process-wide holder for the API token set.

    Empty until the first get_authorized_client() call, which reads the token
    store once and keeps the authorized client for the rest of the process.
    get_authorized_client_async() does the same read in a worker thread, one
    reader at a time, so a cold load never stalls the event loop.
    adopt() swaps in a freshly exchanged token set without a store read.
    Token refresh is left to google-auth, which refreshes on demand whenever
    a refresh token is present.
    """

    def __init__(self, store, client_id: str, client_secret: str):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self._credential_set = None
        self._client = None
        self._lock = None
        self._lock_loop = None

    @property
    def loaded(self) -> bool:
        return self._client is not None

    @property
    def credential_set(self) -> CredentialSet | None:
        return self._credential_set

    def get_authorized_client(self) -> gspread.Client:
        if self._client is None:
            self._adopt_loaded(self.store.load())
        return self._client

    async def get_authorized_client_async(self) -> gspread.Client:
        if self._client is not None:
            return self._client

        async with self._load_lock():
            # another task may have loaded while this one waited
            if self._client is None:
                self._adopt_loaded(await asyncio.to_thread(self.store.load))
        return self._client

    def _load_lock(self) -> asyncio.Lock:
        # asyncio.Lock binds to one loop; the CLI listener runs a new loop per record
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _adopt_loaded(self, credential_set: CredentialSet | None):
        if credential_set is None:
            raise MissingCredentials(
                "No API tokens found. Visit the /authgoogleapi endpoint to authorize the app first."
            )
        console.print("[cyan]Loaded API tokens from storage.[/cyan]")
        self.adopt(credential_set)

    def adopt(self, credential_set: CredentialSet):
        creds = Credentials(
            token=credential_set.access_token,
            refresh_token=credential_set.refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
            expiry=credential_set.expiry,
        )
        self._client = gspread.authorize(creds)
        self._credential_set = credential_set

    def reset(self):
        self._client = None
        self._credential_set = None
