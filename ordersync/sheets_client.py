import asyncio

from google.auth.exceptions import GoogleAuthError
from gspread.exceptions import APIError
from requests.exceptions import RequestException
from rich.console import Console
from rich.markup import escape

from ordersync.config import Settings
from ordersync.credentials import CredentialCache, build_token_store
from ordersync.errors import AppendFailed
from ordersync.processor import row_values

console = Console()

APPEND_PARAMS = {
    # Parse values as if typed by a user so dates and formulas work
    'valueInputOption': 'USER_ENTERED',
    'insertDataOption': 'INSERT_ROWS',
}


class RowAppender:
    """Appends rows to the configured Google Sheet, one API call per row."""

    def __init__(self, cache: CredentialCache, spreadsheet_id: str, target_range: str = "A:M"):
        self.cache = cache
        self.spreadsheet_id = spreadsheet_id
        self.target_range = target_range

    def append_row(self, row: dict, target_range: str | None = None) -> dict:
        client = self.cache.get_authorized_client()
        return self._send(client, row, target_range or self.target_range)

    async def append_all(self, rows: list[dict], target_range: str | None = None) -> list[dict]:
        """
        Issues every row's append at once and waits for all of them.
        Raises AppendFailed on the first error. Rows already written stay written.
        """
        target_range = target_range or self.target_range
        client = await self.cache.get_authorized_client_async()
        return await asyncio.gather(*(asyncio.to_thread(self._send, client, row, target_range) for row in rows))

    def _send(self, client, row: dict, target_range: str) -> dict:
        body = {'values': [row_values(row)]}
        try:
            return client.http_client.values_append(self.spreadsheet_id, target_range, APPEND_PARAMS, body)
        except (APIError, GoogleAuthError, RequestException) as e:
            console.print(f"[red]The API returned an error: {escape(str(e))}[/red]")
            raise AppendFailed(str(e)) from e


def build_row_appender(settings: Settings, cache: CredentialCache | None = None) -> RowAppender:
    if cache is None:
        cache = CredentialCache(build_token_store(settings), settings.client_id, settings.client_secret)
    return RowAppender(cache, settings.spreadsheet_id, settings.append_range)
