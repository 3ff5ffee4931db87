"""Unit tests for Telegram WebApp initData verification."""

import json
import time
from urllib.parse import urlencode

import pytest
from fastapi import HTTPException

from backend.app.core.security_core import (
    sign_init_data,
    telegram_user_from_init_data,
    validate_telegram_init_data,
)

TOKEN = "123456789:ABCdefGHIjklMNOpqrsTUVwxyz123456789"


def build_init_data(user: dict, *, auth_date: int, token: str = TOKEN) -> str:
    items = {
        "auth_date": str(auth_date),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
        "user": json.dumps(user, separators=(",", ":")),
    }
    items["hash"] = sign_init_data(items, token)
    return urlencode(items)


class TestInitData:
    def test_valid_signature(self):
        now = int(time.time())
        raw = build_init_data({"id": 777, "first_name": "Анна"}, auth_date=now)
        parsed = validate_telegram_init_data(raw, bot_token=TOKEN, ttl_seconds=3600, now=now)
        assert parsed["user"]["id"] == 777

    def test_tampered_payload_rejected(self):
        now = int(time.time())
        raw = build_init_data({"id": 777}, auth_date=now).replace("777", "778")
        with pytest.raises(HTTPException) as exc:
            validate_telegram_init_data(raw, bot_token=TOKEN, ttl_seconds=3600, now=now)
        assert exc.value.status_code == 401

    def test_wrong_token_rejected(self):
        now = int(time.time())
        raw = build_init_data({"id": 1}, auth_date=now, token="1:other")
        with pytest.raises(HTTPException) as exc:
            validate_telegram_init_data(raw, bot_token=TOKEN, ttl_seconds=3600, now=now)
        assert exc.value.status_code == 401

    def test_expired(self):
        raw = build_init_data({"id": 1}, auth_date=1_000)
        with pytest.raises(HTTPException) as exc:
            validate_telegram_init_data(raw, bot_token=TOKEN, ttl_seconds=60, now=10_000)
        assert exc.value.status_code == 401

    def test_missing_hash(self):
        with pytest.raises(HTTPException) as exc:
            validate_telegram_init_data("auth_date=1", bot_token=TOKEN)
        assert exc.value.status_code == 400

    def test_no_token_configured(self):
        with pytest.raises(HTTPException) as exc:
            validate_telegram_init_data("auth_date=1&hash=abc", bot_token="")
        assert exc.value.status_code == 503


class TestUserExtraction:
    def test_user_fields(self):
        user = telegram_user_from_init_data(
            {"user": {"id": 42, "first_name": "A", "last_name": "B", "username": "ab"}}
        )
        assert user == {"id": "42", "first_name": "A", "last_name": "B", "username": "ab"}

    def test_missing_user(self):
        with pytest.raises(HTTPException) as exc:
            telegram_user_from_init_data({})
        assert exc.value.status_code == 401
