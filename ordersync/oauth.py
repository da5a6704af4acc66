import asyncio

from google_auth_oauthlib.flow import Flow
from rich.console import Console
from rich.markup import escape

from ordersync.config import AUTH_URI, SCOPES, TOKEN_URI, Settings
from ordersync.credentials import CredentialCache
from ordersync.errors import AuthExchangeFailed
from ordersync.models import CredentialSet

console = Console()


def build_flow(settings: Settings) -> Flow:
    """Web-server OAuth flow that redirects back to the /oauthcallback endpoint."""
    client_config = {
        "web": {
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [settings.redirect_uri],
        }
    }
    # No PKCE: the consent redirect and the callback may be served by different processes
    return Flow.from_client_config(
        client_config,
        scopes=SCOPES,
        redirect_uri=settings.redirect_uri,
        autogenerate_code_verifier=False,
    )


def request_authorization(flow: Flow) -> str:
    """Consent URL asking for offline access, always showing the consent prompt."""
    url, _state = flow.authorization_url(access_type='offline', prompt='consent')
    return url


async def exchange_code(flow: Flow, code: str, store, cache: CredentialCache) -> CredentialSet:
    """
    Exchanges an authorization code for tokens, saves them and hands them to the cache.
    The provider call and the store write run in worker threads; the cache is
    only touched from the caller's event loop. Nothing is stored when the exchange fails.
    """
    try:
        token = await asyncio.to_thread(flow.fetch_token, code=code)
    except Exception as e:
        console.print(f"[red]Authorization code exchange failed: {escape(str(e))}[/red]")
        raise AuthExchangeFailed(str(e)) from e

    credential_set = CredentialSet.from_token_response(token)
    await asyncio.to_thread(store.save, credential_set)
    cache.adopt(credential_set)
    console.print("[green]App configured with new API tokens.[/green]")
    return credential_set
