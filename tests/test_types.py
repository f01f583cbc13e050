import pytest

from gatekeeper.core.errors import ValidationError
from gatekeeper.core.types import Callback, normalize_mac
from gatekeeper.utils.formatting import format_duration


@pytest.mark.parametrize("raw", [
    "aa:bb:cc:dd:ee:ff",
    "AA:BB:CC:DD:EE:FF",
    "aa-bb-cc-dd-ee-ff",
    "  Aa:bB:cc:DD:ee:FF\n",
])
def test_normalize_mac(raw):
    assert normalize_mac(raw) == "aa:bb:cc:dd:ee:ff"


@pytest.mark.parametrize("raw", [None, "", "   ", "aa:bb:cc:dd:ee", "aa:bb:cc:dd:ee:fg", "aabbccddeeff"])
def test_normalize_mac_rejects(raw):
    with pytest.raises(ValidationError):
        normalize_mac(raw)


def test_callback_payload():
    callback = Callback.from_payload("approve_AA:BB:CC:DD:EE:01", message_id=5, callback_id="q")
    assert callback == Callback(action="approve", mac="aa:bb:cc:dd:ee:01", message_id=5, callback_id="q")
    assert Callback.from_payload("deny_aa:bb:cc:dd:ee:01").action == "deny"


@pytest.mark.parametrize("payload", ["", "approve", "block_aa:bb:cc:dd:ee:01", "deny_garbage"])
def test_callback_payload_rejects(payload):
    with pytest.raises(ValidationError):
        Callback.from_payload(payload)


@pytest.mark.parametrize("seconds,expected", [
    (None, "permanent"),
    (0, "0s"),
    (45, "45s"),
    (1800, "30m"),
    (5400, "1h30m"),
    (86400, "1d"),
    (90061, "1d1h1m"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
