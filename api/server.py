"""
FastAPI server for Order Sheet Sync.
Provides the one-time OAuth endpoints and the webhook that appends new orders to the sheet.
"""
from functools import lru_cache

from fastapi import Body, Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse, RedirectResponse
from google_auth_oauthlib.flow import Flow

from ordersync.config import Settings, load_settings
from ordersync.credentials import CredentialCache, build_token_store
from ordersync.errors import AppendFailed, AuthExchangeFailed, MalformedOrder, MissingCredentials
from ordersync.oauth import build_flow, exchange_code, request_authorization
from ordersync.pipeline import append_order
from ordersync.sheets_client import RowAppender

app = FastAPI(title="Order Sheet Sync API", version="1.0.0")

NO_CACHE_HEADERS = {"Cache-Control": "private, max-age=0, s-maxage=0"}
SUCCESS_MESSAGE = "App successfully configured with new Credentials. You can now close this page."


@lru_cache
def get_settings() -> Settings:
    return load_settings()


@lru_cache
def get_token_store():
    return build_token_store(get_settings())


@lru_cache
def get_credential_cache() -> CredentialCache:
    settings = get_settings()
    return CredentialCache(get_token_store(), settings.client_id, settings.client_secret)


def get_oauth_flow() -> Flow:
    # Flow keeps per-exchange state, so every request builds its own
    return build_flow(get_settings())


def get_row_appender() -> RowAppender:
    settings = get_settings()
    return RowAppender(get_credential_cache(), settings.spreadsheet_id, settings.append_range)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}


@app.get("/authgoogleapi")
def auth_google_api(flow: Flow = Depends(get_oauth_flow)):
    """Visit this URL to grant the app access to the spreadsheet."""
    return RedirectResponse(request_authorization(flow), status_code=302, headers=NO_CACHE_HEADERS)


@app.get("/oauthcallback")
async def oauth_callback(
    code: str = "",
    flow: Flow = Depends(get_oauth_flow),
    store=Depends(get_token_store),
    cache: CredentialCache = Depends(get_credential_cache),
):
    """The consent page redirects here. Stores the exchanged tokens."""
    try:
        await exchange_code(flow, code, store, cache)
    except AuthExchangeFailed as e:
        return PlainTextResponse(str(e), status_code=400, headers=NO_CACHE_HEADERS)
    return PlainTextResponse(SUCCESS_MESSAGE, status_code=200, headers=NO_CACHE_HEADERS)


@app.post("/orders")
async def receive_order(
    record: dict = Body(...),
    appender: RowAppender = Depends(get_row_appender),
    settings: Settings = Depends(get_settings),
):
    """Splits a newly created order record and appends its rows to the sheet."""
    try:
        responses = await append_order(record, appender, timezone=settings.timezone)
    except MalformedOrder as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MissingCredentials as e:
        raise HTTPException(status_code=503, detail=str(e))
    except AppendFailed as e:
        raise HTTPException(status_code=502, detail=str(e))

    return {"appended": len(responses), "responses": responses}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
