"""Unit tests for quota parsing and byte formatting."""

import pytest

from tenantkit.services.quota import format_bytes, parse_quota_to_bytes


def test_parse_gigabytes():
    assert parse_quota_to_bytes("2GB") == 2 * 1024**3


def test_parse_plain_number_string():
    assert parse_quota_to_bytes("500") == 500


def test_parse_is_case_insensitive_and_allows_space():
    assert parse_quota_to_bytes("512 mb") == 512 * 1024**2


def test_parse_fractional_units():
    assert parse_quota_to_bytes("1.5KB") == 1536
    assert parse_quota_to_bytes("1TB") == 1024**4


def test_parse_numbers_pass_through():
    assert parse_quota_to_bytes(2048) == 2048
    assert parse_quota_to_bytes(10.7) == 10


@pytest.mark.parametrize("value", ["lots", "", "5 PB", "GB", "-1GB", None, -5, True])
def test_parse_invalid_yields_zero(value):
    assert parse_quota_to_bytes(value) == 0


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(1023) == "1023 B"
    assert format_bytes(1536) == "1.5 KB"
    assert format_bytes(2 * 1024**3) == "2 GB"
    assert format_bytes(5 * 1024**5) == "5120 TB"
