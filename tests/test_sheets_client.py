import asyncio
import threading
import time
from unittest.mock import AsyncMock, MagicMock, patch
import pytest
import requests
from gspread.exceptions import APIError
from ordersync.config import ROW_COLUMNS, Settings
from ordersync.credentials import CredentialCache
from ordersync.errors import AppendFailed, MissingCredentials
from ordersync.models import CredentialSet
from ordersync.sheets_client import APPEND_PARAMS, RowAppender, build_row_appender


def api_error(message="Invalid range"):
    response = MagicMock()
    response.json.return_value = {"error": {"code": 400, "message": message, "status": "INVALID_ARGUMENT"}}
    return APIError(response)


@pytest.fixture
def cache():
    cache = MagicMock()
    cache.get_authorized_client.return_value.http_client.values_append.return_value = {"updates": {"updatedRows": 1}}
    cache.get_authorized_client_async = AsyncMock(return_value=cache.get_authorized_client.return_value)
    return cache


def sent_values(cache):
    values_append = cache.get_authorized_client.return_value.http_client.values_append
    return [call.args[3]['values'] for call in values_append.call_args_list]


def test_append_row_request(cache):
    appender = RowAppender(cache, "test_spreadsheet_id")
    response = appender.append_row({"first": "A", "last": "B", "owed": 60})

    assert response == {"updates": {"updatedRows": 1}}
    values_append = cache.get_authorized_client.return_value.http_client.values_append
    spreadsheet_id, target_range, params, body = values_append.call_args.args
    assert spreadsheet_id == "test_spreadsheet_id"
    assert target_range == "A:M"
    assert params == {'valueInputOption': 'USER_ENTERED', 'insertDataOption': 'INSERT_ROWS'}
    assert params == APPEND_PARAMS

    # a single row, in sheet column order
    assert len(body['values']) == 1
    line = body['values'][0]
    assert len(line) == len(ROW_COLUMNS)
    assert line[:2] == ["A", "B"]
    assert line[ROW_COLUMNS.index("owed")] == 60
    assert line[ROW_COLUMNS.index("purchaser")] == ""


def test_append_all_issues_one_request_per_row(cache):
    appender = RowAppender(cache, "test_spreadsheet_id", "Orders!A:M")
    rows = [{"first": name} for name in ("A", "C", "E")]

    responses = asyncio.run(appender.append_all(rows))

    assert len(responses) == 3
    assert sorted(values[0][0] for values in sent_values(cache)) == ["A", "C", "E"]
    values_append = cache.get_authorized_client.return_value.http_client.values_append
    assert all(call.args[1] == "Orders!A:M" for call in values_append.call_args_list)


def test_append_all_with_explicit_range(cache):
    appender = RowAppender(cache, "test_spreadsheet_id")
    asyncio.run(appender.append_all([{"first": "A"}], "Sheet2!A:V"))

    values_append = cache.get_authorized_client.return_value.http_client.values_append
    assert values_append.call_args.args[1] == "Sheet2!A:V"


def test_append_all_fails_when_one_row_fails(cache):
    values_append = cache.get_authorized_client.return_value.http_client.values_append

    def fail_on_second_row(spreadsheet_id, target_range, params, body):
        if body['values'][0][0] == "C":
            raise api_error()
        return {"updates": {"updatedRows": 1}}

    values_append.side_effect = fail_on_second_row
    appender = RowAppender(cache, "test_spreadsheet_id")
    rows = [{"first": name} for name in ("A", "C", "E")]

    with pytest.raises(AppendFailed, match="Invalid range"):
        asyncio.run(appender.append_all(rows))

    # every request was issued and nothing is rolled back
    assert values_append.call_count == 3
    assert "A" in [values[0][0] for values in sent_values(cache)]


def test_append_all_without_tokens():
    store = MagicMock()
    store.load.return_value = None
    appender = RowAppender(CredentialCache(store, "client-id", "client-secret"), "test_spreadsheet_id")

    with pytest.raises(MissingCredentials):
        asyncio.run(appender.append_all([{"first": name} for name in ("A", "C", "E")]))

    # one store read for the whole batch
    store.load.assert_called_once()


@patch('ordersync.credentials.gspread.authorize')
def test_append_all_loads_tokens_once(mock_authorize):
    mock_authorize.return_value.http_client.values_append.return_value = {"updates": {"updatedRows": 1}}
    store = MagicMock()
    store.load.return_value = CredentialSet(access_token="ya29.token", refresh_token="1//refresh")
    appender = RowAppender(CredentialCache(store, "client-id", "client-secret"), "test_spreadsheet_id")

    asyncio.run(appender.append_all([{"first": name} for name in ("A", "C", "E")]))
    asyncio.run(appender.append_all([{"first": "G"}]))

    store.load.assert_called_once()
    mock_authorize.assert_called_once()
    assert mock_authorize.return_value.http_client.values_append.call_count == 4


def test_build_row_appender():
    cache = MagicMock()
    appender = build_row_appender(Settings(spreadsheet_id="sheet-id", append_range="A:V"), cache)
    assert appender.cache is cache
    assert appender.spreadsheet_id == "sheet-id"
    assert appender.target_range == "A:V"


def test_append_all_wraps_transport_errors(cache):
    values_append = cache.get_authorized_client.return_value.http_client.values_append
    values_append.side_effect = requests.exceptions.ConnectionError("Connection reset by peer")
    appender = RowAppender(cache, "test_spreadsheet_id")

    with pytest.raises(AppendFailed, match="Connection reset by peer"):
        asyncio.run(appender.append_all([{"first": "A"}]))


def test_append_row_wraps_timeouts(cache):
    values_append = cache.get_authorized_client.return_value.http_client.values_append
    values_append.side_effect = requests.exceptions.ReadTimeout("Read timed out")
    appender = RowAppender(cache, "test_spreadsheet_id")

    with pytest.raises(AppendFailed, match="Read timed out"):
        appender.append_row({"first": "A"})


@patch('ordersync.credentials.gspread.authorize')
def test_cold_token_load_does_not_block_event_loop(mock_authorize):
    mock_authorize.return_value.http_client.values_append.return_value = {"updates": {"updatedRows": 1}}
    load_threads = []

    def slow_load():
        load_threads.append(threading.current_thread())
        time.sleep(0.5)
        return CredentialSet(access_token="ya29.token", refresh_token="1//refresh")

    store = MagicMock()
    store.load.side_effect = slow_load
    appender = RowAppender(CredentialCache(store, "client-id", "client-secret"), "test_spreadsheet_id")

    async def run():
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.05)

        ticking = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        # two batches racing on a cold cache
        await asyncio.gather(
            appender.append_all([{"first": "A"}, {"first": "C"}]),
            appender.append_all([{"first": "E"}]),
        )
        ticking.cancel()
        return ticks

    ticks = asyncio.run(run())

    assert load_threads and load_threads[0] is not threading.main_thread()
    store.load.assert_called_once()
    assert len(ticks) >= 5
    assert max(b - a for a, b in zip(ticks, ticks[1:])) < 0.3
    assert mock_authorize.return_value.http_client.values_append.call_count == 3
