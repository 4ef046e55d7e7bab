"""Tests for allow-list parsing and matching (exact entries and CIDR ranges)."""

from __future__ import annotations

import logging
import sys
import pathlib

import pytest

# Ensure this repo's package is first on sys.path to avoid name collisions
repo_root = str(pathlib.Path(__file__).resolve().parents[1])
if repo_root not in sys.path:
    sys.path.insert(0, repo_root)

from portero.allowlist import (  # noqa: E402
    AddressRange,
    AllowList,
    Decision,
    ExactAddress,
    InvalidAllowListEntry,
    parse_entry,
)

ORIGINAL_IPS = ["45.232.149.130", "168.194.102.140", "10.214.148.122"]


@pytest.fixture
def allow_list() -> AllowList:
    return AllowList.from_strings(ORIGINAL_IPS + ["10.214.0.0/16", "2001:db8::/32"])


def test_parse_entry_exact_and_range():
    assert parse_entry("45.232.149.130") == ExactAddress("45.232.149.130")
    assert parse_entry(" 10.214.0.0/16 ") == AddressRange("10.214.0.0", 16)
    assert parse_entry("2001:DB8:0:0::1") == ExactAddress("2001:db8::1")


@pytest.mark.parametrize(
    "text",
    ["", "   ", "not-an-ip", "10.0.0.0/33", "10.0.0.0/-1", "10.0.0.0/x", "::/129", "300.1.1.1"],
)
def test_parse_entry_rejects_invalid(text):
    with pytest.raises(InvalidAllowListEntry):
        parse_entry(text)


def test_invalid_entry_is_a_value_error():
    assert issubclass(InvalidAllowListEntry, ValueError)


def test_range_base_host_bits_are_ignored():
    entries = AllowList([AddressRange("10.214.3.7", 16)])
    assert entries.allows("10.214.200.1")
    assert not entries.allows("10.215.0.1")


@pytest.mark.parametrize("address", ORIGINAL_IPS)
def test_every_exact_entry_is_allowed(allow_list, address):
    assert allow_list.allows(address) is True


@pytest.mark.parametrize("address", ["8.8.8.8", "45.232.149.131", "192.168.1.1", "2001:db9::1"])
def test_addresses_outside_all_entries_are_denied(allow_list, address):
    assert allow_list.allows(address) is False


def test_range_boundaries():
    entries = AllowList.from_strings(["10.214.0.0/16"])
    assert entries.allows("10.214.0.1")
    assert entries.allows("10.214.255.255")
    assert not entries.allows("10.215.0.1")
    assert not entries.allows("10.213.255.255")


def test_zero_and_full_prefix_lengths():
    everything = AllowList.from_strings(["0.0.0.0/0"])
    assert everything.allows("8.8.8.8")
    assert not everything.allows("::1")  # family mismatch

    single = AllowList.from_strings(["8.8.8.8/32"])
    assert single.allows("8.8.8.8")
    assert not single.allows("8.8.8.9")


def test_ipv6_range(allow_list):
    assert allow_list.allows("2001:db8:ffff::1")
    assert not allow_list.allows("2001:db9::1")


def test_family_mismatch_is_not_a_match_and_evaluation_continues():
    entries = AllowList.from_strings(["2001:db8::/32", "1.2.3.4"])
    assert entries.allows("1.2.3.4")
    assert not entries.allows("::ffff:1.2.3.4")


def test_ipv4_mapped_form_is_not_equivalent_to_ipv4():
    entries = AllowList.from_strings(["45.232.149.130"])
    assert not entries.allows("::ffff:45.232.149.130")


def test_exact_match_uses_canonical_form():
    entries = AllowList.from_strings(["2001:db8::1"])
    assert entries.allows("2001:0db8:0000:0000:0000:0000:0000:0001")


@pytest.mark.parametrize("address", ["", "   ", "garbage", "testclient", "1.2.3", "1.2.3.4:8080"])
def test_malformed_address_is_denied_without_raising(allow_list, address, caplog):
    with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
        decision = allow_list.evaluate(address)
    assert decision.allowed is False
    assert decision.reason == "unparseable address"
    assert allow_list.allows(address) is False
    assert repr(address) in caplog.text


def test_none_address_is_denied(allow_list):
    assert allow_list.allows(None) is False  # type: ignore[arg-type]


def test_decision_values():
    entries = AllowList.from_strings(["1.2.3.4"])
    assert entries.evaluate("1.2.3.4") == Decision.allow("1.2.3.4")
    denied = entries.evaluate("8.8.8.8")
    assert denied == Decision.deny("8.8.8.8", "address not in allow-list")
    assert not denied.allowed


def test_order_does_not_affect_result():
    forward = AllowList.from_strings(["10.0.0.0/8", "1.2.3.4", "2001:db8::/32"])
    backward = AllowList(reversed(forward.entries))
    for address in ["10.1.2.3", "1.2.3.4", "1.2.3.5", "2001:db8::5", "fe80::1", ""]:
        assert forward.allows(address) == backward.allows(address)


def test_evaluation_is_idempotent(allow_list):
    before = allow_list.entries
    results = {allow_list.allows("10.214.9.9") for _ in range(50)}
    results_denied = {allow_list.allows("8.8.8.8") for _ in range(50)}
    assert results == {True}
    assert results_denied == {False}
    assert allow_list.entries == before


def test_entries_are_immutable():
    entry = parse_entry("1.2.3.4")
    with pytest.raises(AttributeError):
        entry.value = "8.8.8.8"  # type: ignore[misc]
    assert isinstance(AllowList.from_strings(["1.2.3.4"]).entries, tuple)


def test_container_helpers(allow_list):
    assert len(allow_list) == 5
    assert "45.232.149.130" in allow_list
    assert "8.8.8.8" not in allow_list
    assert allow_list.describe()[-2:] == ["10.214.0.0/16", "2001:db8::/32"]


def test_empty_allow_list_denies_everything():
    assert not AllowList().allows("45.232.149.130")


def test_exact_entry_canonicalizes_its_value():
    entry = ExactAddress("2001:DB8::1")
    assert entry.value == "2001:db8::1"
    assert AllowList([entry]).allows("2001:db8::1")


@pytest.mark.parametrize("value", ["not-an-ip", "", "10.0.0.0/8", " 1.2.3.4"])
def test_exact_entry_rejects_non_addresses(value):
    with pytest.raises(InvalidAllowListEntry):
        ExactAddress(value)


def test_range_built_directly_matches_canonical_input():
    entries = AllowList([AddressRange("2001:DB8::", 32)])
    assert entries.allows("2001:db8::1")
    assert AddressRange("2001:DB8::", 32) == AddressRange("2001:db8::", 32)


def test_range_parses_base_once(monkeypatch):
    import portero.allowlist as allowlist_module

    entries = AllowList([AddressRange("10.214.0.0", 16), AddressRange("10.0.0.0", 8)])

    parsed = []
    real_ip_address = allowlist_module.ip_address

    def counting_ip_address(text):
        parsed.append(text)
        return real_ip_address(text)

    monkeypatch.setattr(allowlist_module, "ip_address", counting_ip_address)
    assert entries.allows("10.214.1.1")
    assert not entries.allows("192.168.0.1")
    # only the evaluated addresses are parsed, never the range bases
    assert parsed == ["10.214.1.1", "192.168.0.1"]


@pytest.mark.parametrize("address", [" 45.232.149.130", "45.232.149.130 ", "\t45.232.149.130"])
def test_surrounding_whitespace_is_not_canonical(address):
    entries = AllowList.from_strings(["45.232.149.130"])
    decision = entries.evaluate(address)
    assert decision.allowed is False
    assert decision.reason == "unparseable address"
