"""
Tests for loose round-date parsing.
"""

from datetime import datetime

import pytest

from dealsync.common.dates import parse_deal_date
from dealsync.common.errors import UnparseableDateError


class TestParseDealDate:
    def test_month_year_is_first_of_month(self):
        assert parse_deal_date("Oct 2025") == datetime(2025, 10, 1)

    def test_full_month_name(self):
        assert parse_deal_date("September 2024") == datetime(2024, 9, 1)

    def test_day_month_year(self):
        assert parse_deal_date("31 Oct 2025") == datetime(2025, 10, 31)

    def test_iso_date(self):
        assert parse_deal_date("2025-03-15") == datetime(2025, 3, 15)

    def test_iso_with_offset_is_converted_to_utc(self):
        assert parse_deal_date("2025-03-15T02:00:00+02:00") == datetime(2025, 3, 15, 0, 0)

    def test_unparseable_falls_back_to_now(self, caplog):
        now = datetime(2026, 1, 2, 3, 4, 5)
        assert parse_deal_date("sometime soon", now=now) == now
        assert "Could not parse date" in caplog.text

    def test_unknown_month_falls_back(self):
        now = datetime(2026, 1, 2)
        assert parse_deal_date("Foo 2025", now=now) == now

    def test_day_out_of_range_falls_back(self):
        now = datetime(2026, 1, 2)
        assert parse_deal_date("31 Feb 2025", now=now) == now

    def test_empty_falls_back(self):
        now = datetime(2026, 1, 2)
        assert parse_deal_date("", now=now) == now

    def test_strict_mode_raises(self):
        with pytest.raises(UnparseableDateError):
            parse_deal_date("sometime soon", strict=True)

    def test_strict_mode_parses_valid_dates(self):
        assert parse_deal_date("Oct 2025", strict=True) == datetime(2025, 10, 1)
