"""Unit tests for the Sheets read client and the shared retry helper."""

from urllib.parse import unquote

import httpx
import pytest

from backend.app.core.errors_core import NotConfiguredError, RemoteStoreError, TransientNetworkError
from backend.app.integrations.retry import backoff_delay
from backend.app.integrations.sheets_api import SheetsClient
from tests.fakes import RecordingSleep


def make_client(handler, sleep=None, **kwargs) -> SheetsClient:
    params = {"spreadsheet_id": "sheet-123", "api_key": "key-abc"}
    params.update(kwargs)
    return SheetsClient(
        transport=httpx.MockTransport(handler),
        sleep=sleep or RecordingSleep(),
        **params,
    )


class TestBackoff:
    def test_delays_double(self):
        assert [backoff_delay(n, 1.0) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


class TestGetValues:
    @pytest.mark.asyncio
    async def test_reads_matrix(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = unquote(request.url.raw_path.decode().split("?", 1)[0])
            seen["key"] = request.url.params.get("key")
            return httpx.Response(200, json={"values": [["ID", "Telegram ID"], ["1", "100"]]})

        rows = await make_client(handler).get_values("Партнеры!A:M")

        assert rows == [["ID", "Telegram ID"], ["1", "100"]]
        assert seen["path"].endswith("/sheet-123/values/Партнеры!A:M")
        assert seen["key"] == "key-abc"

    @pytest.mark.asyncio
    async def test_missing_values_is_empty(self):
        client = make_client(lambda request: httpx.Response(200, json={"range": "A1:M1"}))
        assert await client.get_values("Партнеры!A:M") == []

    @pytest.mark.asyncio
    async def test_cells_coerced_to_strings(self):
        client = make_client(lambda request: httpx.Response(200, json={"values": [[1, 2.5, None]]}))
        assert await client.get_values("X!A:C") == [["1", "2.5", ""]]

    @pytest.mark.asyncio
    async def test_not_configured_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler, api_key=None)
        with pytest.raises(NotConfiguredError):
            await client.get_values("Партнеры!A:M")
        assert calls == []

    @pytest.mark.asyncio
    async def test_http_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, text="forbidden")

        sleep = RecordingSleep()
        with pytest.raises(RemoteStoreError):
            await make_client(handler, sleep=sleep).get_values("Партнеры!A:M")
        assert len(calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_decoding_error_is_remote_store_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.DecodingError("boom", request=request)

        sleep = RecordingSleep()
        with pytest.raises(RemoteStoreError) as exc:
            await make_client(handler, sleep=sleep).get_values("Партнеры!A:M")
        assert exc.value.details == {"error_type": "DecodingError"}
        assert len(calls) == 1
        assert sleep.delays == []


class TestRetries:
    @pytest.mark.asyncio
    async def test_recovers_after_transport_errors(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"values": [["h"], ["v"]]})

        sleep = RecordingSleep()
        rows = await make_client(handler, sleep=sleep).get_values("Партнеры!A:M")

        assert rows == [["h"], ["v"]]
        assert len(attempts) == 3
        assert sleep.delays == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        sleep = RecordingSleep()
        with pytest.raises(TransientNetworkError) as exc:
            await make_client(handler, sleep=sleep).get_values("Партнеры!A:M")

        assert len(attempts) == 3
        # после последней попытки не ждём
        assert sleep.delays == [2.0, 4.0]
        assert exc.value.details == {"attempts": 3}


class TestMetadata:
    @pytest.mark.asyncio
    async def test_spreadsheet_metadata(self):
        def handler(request):
            assert request.url.path.endswith("/sheet-123")
            return httpx.Response(200, json={"properties": {"title": "Partners"}})

        meta = await make_client(handler).get_spreadsheet()
        assert meta["properties"]["title"] == "Partners"
