"""Unit tests for PartnerDirectoryClient."""

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from backend.app.core.errors_core import NotConfiguredError, RemoteStoreError, TransientNetworkError
from backend.app.integrations.apps_script_api import AppsScriptClient, AppsScriptResult
from backend.app.integrations.sheets_api import SheetsClient
from backend.app.services import partner_directory
from backend.app.services.partner_directory import PartnerDirectoryClient
from backend.app.services.partner_records import NewPartnerInput
from tests.fakes import FakeAppsScript, FakeSheets, MemoryStore, RecordingSleep, commission_row, partner_row

PARTNERS_RANGE = "Партнеры!A:M"
CODES_RANGE = "Партнеры!H:H"
COMMISSIONS_RANGE = "Начисления!A:G"


def make_directory(settings, sheets=None, apps=None, store=None, sleep=None):
    return PartnerDirectoryClient(
        settings=settings,
        sheets=sheets or FakeSheets(),
        apps_script=apps or FakeAppsScript(),
        local_store=store,
        sleep=sleep or RecordingSleep(),
    )


def new_partner(telegram_id="500", inviter_code=None, username=None):
    return NewPartnerInput(
        telegram_id=telegram_id,
        first_name="Мария",
        last_name="Иванова",
        phone="+79991112233",
        email="maria@example.com",
        username=username,
        inviter_code=inviter_code,
    )


class TestLookups:
    @pytest.mark.asyncio
    async def test_empty_identity_makes_no_call(self, settings):
        sheets = FakeSheets()
        directory = make_directory(settings, sheets)
        assert await directory.get_partner("") is None
        assert sheets.calls == []

    @pytest.mark.asyncio
    async def test_found_by_identity(self, settings):
        sheets = FakeSheets([partner_row("100", "PARTNERAAAAAA"), partner_row("200", "PARTNERBBBBBB")])
        partner = await make_directory(settings, sheets).get_partner("200")
        assert partner is not None
        assert partner.referral_code == "PARTNERBBBBBB"
        assert sheets.calls == [PARTNERS_RANGE]

    @pytest.mark.asyncio
    async def test_header_row_never_matches(self, settings):
        assert await make_directory(settings).get_partner("Telegram ID") is None

    @pytest.mark.asyncio
    async def test_first_match_wins(self, settings):
        sheets = FakeSheets([partner_row("1", "FIRST", row_id="r1"), partner_row("1", "SECOND", row_id="r2")])
        partner = await make_directory(settings, sheets).get_partner("1")
        assert partner.id == "r1"

    @pytest.mark.asyncio
    async def test_read_failure_is_absent(self, settings):
        sheets = FakeSheets([partner_row("100", "C")])
        sheets.fail(PARTNERS_RANGE, TransientNetworkError())
        assert await make_directory(settings, sheets).get_partner("100") is None

    @pytest.mark.asyncio
    async def test_not_configured_is_absent(self, settings):
        sheets = FakeSheets()
        sheets.fail(PARTNERS_RANGE, NotConfiguredError())
        assert await make_directory(settings, sheets).get_partner("100") is None

    @pytest.mark.asyncio
    async def test_found_partner_cached(self, settings, local_store):
        sheets = FakeSheets([partner_row("100", "PARTNERAAAAAA")])
        await make_directory(settings, sheets, store=local_store).get_partner("100")
        cached = await local_store.get("partner_100")
        assert cached["referral_code"] == "PARTNERAAAAAA"

    @pytest.mark.asyncio
    async def test_by_referral_code(self, settings):
        sheets = FakeSheets([partner_row("100", "PARTNERAAAAAA"), partner_row("200", "PARTNERBBBBBB")])
        directory = make_directory(settings, sheets)
        assert (await directory.get_partner_by_referral_code("PARTNERBBBBBB")).telegram_id == "200"
        assert await directory.get_partner_by_referral_code("partnerbbbbbb") is None
        assert await directory.get_partner_by_referral_code("") is None


class TestValidateReferralCode:
    @pytest.mark.asyncio
    async def test_exact_case_sensitive(self, settings):
        sheets = FakeSheets([partner_row("1", "PARTNERABC123")])
        directory = make_directory(settings, sheets)
        assert await directory.validate_referral_code("PARTNERABC123") is True
        assert await directory.validate_referral_code("partnerabc123") is False
        assert await directory.validate_referral_code("PARTNERABC12") is False
        assert sheets.calls == [CODES_RANGE] * 3

    @pytest.mark.asyncio
    async def test_header_is_not_a_code(self, settings):
        assert await make_directory(settings).validate_referral_code("Промокод") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [NotConfiguredError(), RemoteStoreError(), TransientNetworkError()])
    async def test_errors_propagate(self, settings, exc):
        sheets = FakeSheets()
        sheets.fail(CODES_RANGE, exc)
        with pytest.raises(type(exc)):
            await make_directory(settings, sheets).validate_referral_code("X")


class TestRegisterPartner:
    @pytest.mark.asyncio
    async def test_already_registered(self, settings):
        sheets = FakeSheets([partner_row("500", "PARTNEREXIST1")])
        apps = FakeAppsScript()
        result = await make_directory(settings, sheets, apps).register_partner(new_partner("500"))
        assert result.success is False
        assert result.error_code == "already_registered"
        assert apps.commands == []

    @pytest.mark.asyncio
    async def test_second_registration_rejected_before_inviter_check(self, settings):
        sheets = FakeSheets([partner_row("1", "PARTNERREAL01")])
        apps = FakeAppsScript(
            on_send=lambda action, data: sheets.add_partner(partner_row(data["telegramId"], data["promoCode"], "1"))
        )
        directory = make_directory(settings, sheets, apps)

        first = await directory.register_partner(new_partner("500"))
        assert first.success is True
        reads_before = len(sheets.calls)

        second = await directory.register_partner(new_partner("500", inviter_code="PARTNERREAL01"))

        assert second.success is False
        assert second.error_code == "already_registered"
        assert CODES_RANGE not in sheets.calls[reads_before:]
        assert len(apps.commands) == 1

    @pytest.mark.asyncio
    async def test_invalid_inviter_makes_no_write(self, settings):
        sheets = FakeSheets([partner_row("1", "PARTNERREAL01")])
        apps = FakeAppsScript()
        result = await make_directory(settings, sheets, apps).register_partner(
            new_partner(inviter_code="PARTNERFAKE00")
        )
        assert result.success is False
        assert result.error_code == "invalid_inviter_code"
        assert result.error == "Invalid inviter code."
        assert apps.commands == []

    @pytest.mark.asyncio
    async def test_success_with_verification(self, settings, local_store):
        sheets = FakeSheets([partner_row("1", "PARTNERREAL01")])

        def land(action, data):
            sheets.add_partner(partner_row(data["telegramId"], data["promoCode"], "1"))

        apps = FakeAppsScript(on_send=land)
        sleep = RecordingSleep()
        directory = make_directory(settings, sheets, apps, store=local_store, sleep=sleep)

        result = await directory.register_partner(new_partner(inviter_code="  PARTNERREAL01 "))

        assert result.success is True
        assert result.confirmed is True
        assert result.referral_code.startswith("PARTNER")
        assert len(result.referral_code) == len("PARTNER") + 6
        assert sleep.delays == [5.0]

        action, payload = apps.commands[0]
        assert action == "registerPartner"
        assert payload["telegramId"] == "500"
        assert payload["promoCode"] == result.referral_code
        assert payload["inviterCode"] == "PARTNERREAL01"
        assert payload["username"] == ""
        assert len(payload["registrationDate"]) == 10
        assert set(payload) == {
            "telegramId", "firstName", "lastName", "phone", "email",
            "username", "promoCode", "inviterCode", "registrationDate",
        }
        assert await local_store.get("partner_500") is not None
        assert await local_store.get("fallback_partner_500") is None

    @pytest.mark.asyncio
    async def test_blank_inviter_sent_as_null_and_not_validated(self, settings):
        sheets = FakeSheets()
        apps = FakeAppsScript()
        directory = make_directory(settings, sheets, apps)

        await directory.register_partner(new_partner(inviter_code="   ", username="maria"))

        payload = apps.commands[0][1]
        assert payload["inviterCode"] is None
        assert payload["username"] == "maria"
        # одна проверка кода: только уникальность нового промокода
        assert sheets.calls.count(CODES_RANGE) == 1

    @pytest.mark.asyncio
    async def test_confirmed_on_second_read(self, settings):
        sheets = FakeSheets()
        written = {}

        def land_late(call_number):
            if call_number == 2:
                sheets.add_partner(partner_row("500", written["code"]))

        apps = FakeAppsScript(on_send=lambda action, data: written.update(code=data["promoCode"]))
        sleep = RecordingSleep(on_sleep=land_late)
        result = await make_directory(settings, sheets, apps, sleep=sleep).register_partner(new_partner())

        assert result.success is True
        assert result.confirmed is True
        assert sleep.delays == [5.0, 5.0]

    @pytest.mark.asyncio
    async def test_unconfirmed_still_success_and_fallback_cached(self, settings, local_store):
        sheets = FakeSheets()
        sleep = RecordingSleep()
        directory = make_directory(settings, sheets, FakeAppsScript(), store=local_store, sleep=sleep)

        result = await directory.register_partner(new_partner())

        assert result.success is True
        assert result.confirmed is False
        assert sleep.delays == [5.0, 5.0]
        fallback = await local_store.get("fallback_partner_500")
        assert fallback["referral_code"] == result.referral_code
        assert await local_store.get("partner_500") is None

    @pytest.mark.asyncio
    async def test_remote_rejection_verbatim(self, settings):
        apps = FakeAppsScript(
            AppsScriptResult(success=False, error="Sheet 'Партнеры' is locked", error_code="remote_rejected")
        )
        result = await make_directory(settings, apps=apps).register_partner(new_partner())
        assert result.success is False
        assert result.error == "Sheet 'Партнеры' is locked"
        assert result.error_code == "remote_rejected"
        assert result.confirmed is False

    @pytest.mark.asyncio
    async def test_code_collision_regenerated(self, settings, monkeypatch):
        sheets = FakeSheets([partner_row("1", "PARTNERTAKEN1")])
        codes = iter(["PARTNERTAKEN1", "PARTNERTAKEN1", "PARTNERFRESH1"])
        monkeypatch.setattr(partner_directory, "gen_ref_code", lambda prefix, length: next(codes))
        apps = FakeAppsScript()

        result = await make_directory(settings, sheets, apps).register_partner(new_partner())

        assert result.referral_code == "PARTNERFRESH1"
        assert apps.commands[0][1]["promoCode"] == "PARTNERFRESH1"

    @pytest.mark.asyncio
    async def test_collision_exhausted(self, settings, monkeypatch):
        sheets = FakeSheets([partner_row("1", "PARTNERTAKEN1")])
        monkeypatch.setattr(partner_directory, "gen_ref_code", lambda prefix, length: "PARTNERTAKEN1")
        apps = FakeAppsScript()

        result = await make_directory(settings, sheets, apps).register_partner(new_partner())

        assert result.success is False
        assert result.error_code == "registration_failed"
        assert apps.commands == []

    @pytest.mark.asyncio
    async def test_store_not_configured(self, settings):
        sheets = FakeSheets()
        sheets.fail(CODES_RANGE, NotConfiguredError())
        apps = FakeAppsScript()
        result = await make_directory(settings, sheets, apps).register_partner(new_partner(inviter_code="X"))
        assert result.error_code == "not_configured"
        assert apps.commands == []


class TestCommissions:
    @pytest.mark.asyncio
    async def test_filtered_and_sorted(self, settings):
        sheets = FakeSheets(
            commissions=[
                commission_row("1", "100", "2025-01-10"),
                commission_row("2", "999", "2025-12-31"),
                commission_row("3", "100", "2025-03-01"),
                commission_row("4", "100", "2025-03-01"),
                commission_row("5", "100", "2024-11-11"),
            ]
        )
        records = await make_directory(settings, sheets).get_partner_commissions("100")
        assert [r.id for r in records] == ["3", "4", "1", "5"]
        assert sheets.calls == [COMMISSIONS_RANGE]

    @pytest.mark.asyncio
    async def test_failure_is_empty(self, settings):
        sheets = FakeSheets(commissions=[commission_row("1", "100", "2025-01-10")])
        sheets.fail(COMMISSIONS_RANGE, TransientNetworkError())
        assert await make_directory(settings, sheets).get_partner_commissions("100") == []

    @pytest.mark.asyncio
    async def test_empty_identity(self, settings):
        sheets = FakeSheets()
        assert await make_directory(settings, sheets).get_partner_commissions("") == []
        assert sheets.calls == []


class TestNetwork:
    @pytest.mark.asyncio
    async def test_tree(self, settings):
        sheets = FakeSheets(
            [
                partner_row("R", "CR"),
                partner_row("A", "CA", "R"),
                partner_row("B", "CB", "R"),
                partner_row("C", "CC", "A"),
                partner_row("D", "CD", "C"),
            ]
        )
        tree = await make_directory(settings, sheets).get_partner_network("R")
        assert [p.telegram_id for p in tree.level1] == ["A", "B"]
        assert [p.telegram_id for p in tree.level2] == ["C"]
        assert [p.telegram_id for p in tree.level3] == ["D"]
        assert tree.level4 == []

    @pytest.mark.asyncio
    async def test_unknown_root_is_empty(self, settings):
        sheets = FakeSheets([partner_row("A", "CA", "R")])
        tree = await make_directory(settings, sheets).get_partner_network("R")
        assert tree.total == 0

    @pytest.mark.asyncio
    async def test_failure_is_empty(self, settings):
        sheets = FakeSheets([partner_row("R", "CR"), partner_row("A", "CA", "R")])
        sheets.fail(PARTNERS_RANGE, TransientNetworkError())
        tree = await make_directory(settings, sheets).get_partner_network("R")
        assert tree.counts == [0, 0, 0, 0]


class TestDashboardAndConnection:
    @pytest.mark.asyncio
    async def test_dashboard(self, settings):
        sheets = FakeSheets(
            [partner_row("R", "CR"), partner_row("A", "CA", "R")],
            [commission_row("1", "R", "2025-01-01", amount="10"), commission_row("2", "R", "2025-02-01", amount="5")],
        )
        dashboard = await make_directory(settings, sheets).get_partner_dashboard("R")
        assert dashboard.partner.telegram_id == "R"
        assert [c.id for c in dashboard.commissions] == ["2", "1"]
        assert dashboard.summary.total_amount == 15.0
        assert dashboard.network_counts == [1, 0, 0, 0]

    @pytest.mark.asyncio
    async def test_dashboard_unknown(self, settings):
        assert await make_directory(settings).get_partner_dashboard("nobody") is None

    @pytest.mark.asyncio
    async def test_connection_ok(self, settings):
        status = await make_directory(settings).check_connection()
        assert status.success is True
        assert status.title == "Partner Program"
        assert status.sheets == ["Партнеры", "Начисления"]

    @pytest.mark.asyncio
    async def test_connection_not_configured_skips_network(self, settings):
        sheets = FakeSheets(configured=False)
        status = await make_directory(settings, sheets).check_connection()
        assert status.success is False
        assert sheets.calls == []

    @pytest.mark.asyncio
    async def test_connection_error(self, settings):
        sheets = FakeSheets()
        sheets.fail("<metadata>", RemoteStoreError("Sheets API error: 403 Forbidden"))
        status = await make_directory(settings, sheets).check_connection()
        assert status.success is False
        assert "403" in status.message


class TestLocalData:
    @pytest.mark.asyncio
    async def test_clear_removes_only_partner_namespaces(self, settings, local_store):
        for key in ("partner_1", "partner_2", "fallback_partner_3", "ui_theme"):
            await local_store.set(key, {"k": key})
        directory = make_directory(settings, store=local_store)

        assert await directory.clear_local_data() == 3
        assert await local_store.keys() == ["ui_theme"]

    @pytest.mark.asyncio
    async def test_clear_scoped_to_user(self, settings, local_store):
        for key in ("partner_1", "partner_12", "fallback_partner_1"):
            await local_store.set(key, {})
        directory = make_directory(settings, store=local_store)

        assert await directory.clear_local_data("1") == 2
        assert await local_store.keys() == ["partner_12"]

    @pytest.mark.asyncio
    async def test_clear_without_store(self, settings):
        assert await make_directory(settings).clear_local_data() == 0

    @pytest.mark.asyncio
    async def test_cached_partner_prefers_confirmed(self, settings, local_store):
        sheets = FakeSheets([partner_row("100", "PARTNERAAAAAA")])
        directory = make_directory(settings, sheets, store=local_store)
        await directory.get_partner("100")
        await local_store.set("fallback_partner_100", {"telegram_id": "100", "referral_code": "OTHER"})

        record, source = await directory.cached_partner("100")
        assert source == "cache"
        assert record.referral_code == "PARTNERAAAAAA"

    @pytest.mark.asyncio
    async def test_cached_partner_fallback(self, settings, local_store):
        await local_store.set("fallback_partner_9", {"telegram_id": "9", "referral_code": "PARTNERPEND01"})
        record, source = await make_directory(settings, store=local_store).cached_partner("9")
        assert source == "fallback"
        assert record.referral_code == "PARTNERPEND01"

    @pytest.mark.asyncio
    async def test_cached_partner_missing(self, settings, local_store):
        assert await make_directory(settings, store=local_store).cached_partner("9") == (None, None)

    @pytest.mark.asyncio
    async def test_scoped_clear_survives_store_failure(self, settings):
        class BrokenStore(MemoryStore):
            async def delete(self, key):
                raise OperationalError("DELETE FROM local_cache", {}, Exception("database is locked"))

        directory = make_directory(settings, store=BrokenStore())
        assert await directory.clear_local_data("1") == 0

    @pytest.mark.asyncio
    async def test_full_clear_survives_store_failure(self, settings):
        class BrokenStore(MemoryStore):
            async def delete_by_prefixes(self, prefixes):
                raise OperationalError("DELETE FROM local_cache", {}, Exception("database is locked"))

        directory = make_directory(settings, store=BrokenStore())
        assert await directory.clear_local_data() == 0


def http_directory(settings, sheets_handler, script_handler=None):
    """Клиент поверх настоящих SheetsClient/AppsScriptClient и MockTransport."""
    sleep = RecordingSleep()
    sheets = SheetsClient(
        spreadsheet_id="sheet-123",
        api_key="key-abc",
        base_url=settings.SHEETS_API_BASE_URL,
        transport=httpx.MockTransport(sheets_handler),
        sleep=sleep,
    )
    apps = AppsScriptClient(
        script_url="https://script.example.test/exec",
        transport=httpx.MockTransport(script_handler or sheets_handler),
        sleep=sleep,
    )
    return PartnerDirectoryClient(settings=settings, sheets=sheets, apps_script=apps, sleep=sleep)


class TestHttpClientFailures:
    @pytest.mark.asyncio
    async def test_decoding_error_partner_is_absent(self, settings):
        def handler(request):
            raise httpx.DecodingError("boom", request=request)

        assert await http_directory(settings, handler).get_partner("1") is None

    @pytest.mark.asyncio
    async def test_redirect_loop_commissions_empty(self, settings):
        def handler(request):
            raise httpx.TooManyRedirects("loop", request=request)

        directory = http_directory(settings, handler)
        assert await directory.get_partner_commissions("1") == []
        assert (await directory.get_partner_network("1")).total == 0

    @pytest.mark.asyncio
    async def test_redirect_loop_on_write_is_failure(self, settings):
        def sheets_handler(request):
            return httpx.Response(200, json={"values": [["ID", "Telegram ID"]]})

        def script_handler(request):
            raise httpx.TooManyRedirects("loop", request=request)

        result = await http_directory(settings, sheets_handler, script_handler).register_partner(new_partner())

        assert result.success is False
        assert result.error_code == "remote_rejected"
        assert "TooManyRedirects" in result.error
