from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest

from principal_crm.config import load_settings
from principal_crm.loaders.utils import (
    normalise_date,
    resolve_now,
    safe_bool,
    safe_float,
    safe_int,
    safe_str,
    to_snake_case,
    utc_now,
)


class TestNormaliseDate:
    def test_excel_serial(self):
        assert normalise_date(45658) == pd.Timestamp("2025-01-01")

    def test_timezone_converted_to_naive_utc(self):
        assert normalise_date("2025-03-04T10:00:00+02:00") == pd.Timestamp("2025-03-04 08:00")

    def test_date_and_datetime(self):
        assert normalise_date(date(2025, 3, 4)) == pd.Timestamp("2025-03-04")
        assert normalise_date(datetime(2025, 3, 4, 9, 30)) == pd.Timestamp("2025-03-04 09:30")

    @pytest.mark.parametrize("value", [None, "", "   ", np.nan, pd.NaT, "garbage", True])
    def test_missing_or_invalid(self, value):
        assert normalise_date(value) is None

    def test_resolve_now(self):
        assert resolve_now("2025-03-04") == pd.Timestamp("2025-03-04")
        assert resolve_now().tzinfo is None
        assert utc_now().tzinfo is None
        with pytest.raises(ValueError):
            resolve_now("not a time")


class TestCoercion:
    def test_safe_float(self):
        assert safe_float("78%") == 78.0
        assert safe_float(" 3.5 ") == 3.5
        assert safe_float("=SUM(A1:A3)") is None
        assert safe_float("abc") is None
        assert safe_float(np.nan) is None
        assert safe_float(True) is None
        assert safe_float(np.int64(4)) == 4.0

    def test_safe_int(self):
        assert safe_int("7.9") == 7
        assert safe_int(None) == 0
        assert safe_int("n/a", default=-1) == -1

    def test_safe_bool(self):
        assert safe_bool("Yes") is True
        assert safe_bool("0") is False
        assert safe_bool(1) is True
        assert safe_bool(np.nan) is None
        assert safe_bool("maybe") is None

    def test_safe_str(self):
        assert safe_str("  acme ") == "acme"
        assert safe_str("   ") is None
        assert safe_str(np.nan) is None
        assert safe_str(12) == "12"

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Principal Name", "principal_name"),
            ("Win Rate (%)", "win_rate_pct"),
            ("engagementScore", "engagement_score"),
            ("Follow-up Date", "follow_up_date"),
            ("principal_id", "principal_id"),
        ],
    )
    def test_snake_case(self, raw, expected):
        assert to_snake_case(raw) == expected


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("CRM_API_URL", "CRM_API_KEY", "CRM_DATA_SOURCE", "CRM_TIMEOUT_SECONDS", "CRM_PAGE_SIZE"):
            monkeypatch.delenv(name, raising=False)
        settings = load_settings()
        assert settings.data_source == "mock"
        assert settings.timeout_seconds == 15.0
        assert settings.page_size == 20
        assert not settings.use_api

    def test_api_source(self, monkeypatch):
        monkeypatch.setenv("CRM_API_URL", "https://crm.example.com/")
        monkeypatch.setenv("CRM_API_KEY", "secret")
        monkeypatch.setenv("CRM_DATA_SOURCE", "API")
        monkeypatch.setenv("CRM_TIMEOUT_SECONDS", "soon")
        monkeypatch.setenv("CRM_PAGE_SIZE", "0")
        settings = load_settings()
        assert settings.api_url == "https://crm.example.com"
        assert settings.use_api
        assert settings.timeout_seconds == 15.0
        assert settings.page_size == 1

    def test_api_source_needs_url(self, monkeypatch):
        monkeypatch.delenv("CRM_API_URL", raising=False)
        monkeypatch.setenv("CRM_DATA_SOURCE", "api")
        assert not load_settings().use_api
