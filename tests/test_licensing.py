import base64
import json
import os
import stat
import time

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from permitdesk import licensing
from permitdesk.licensing import (
    LICENSE_FILENAME,
    default_limits,
    expired_limits,
    is_valid_license_key,
    load_license_from_disk,
    no_license,
    paid_limits,
    persist_license,
    tier_info,
    trial_limits,
    validate_license_key,
)


def _b64(data):
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


@pytest.fixture
def signing_key(monkeypatch):
    private = Ed25519PrivateKey.generate()
    public_hex = private.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
    monkeypatch.setattr(licensing, "PUBLIC_KEY_HEX", public_hex)
    return private


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    monkeypatch.delenv("STOCKYARD_LICENSE_KEY", raising=False)


def make_key(private, claims):
    payload = json.dumps(claims).encode()
    return "SY-" + _b64(payload) + "." + _b64(private.sign(payload))


def test_limit_constructors():
    assert no_license().tier == "none"
    assert paid_limits().tier == "paid"
    assert expired_limits().trial_expired is True
    assert expired_limits().tier == "expired"
    trial = trial_limits("2099-12-31T00:00:00Z")
    assert (trial.tier, trial.trial_end) == ("trial", "2099-12-31T00:00:00Z")


def test_persist_license_writes_file_0600(tmp_path):
    persist_license(tmp_path, "SY-test-key-payload.signature")
    mode = os.stat(tmp_path / LICENSE_FILENAME).st_mode
    assert stat.S_IMODE(mode) == 0o600


def test_persist_license_requires_dir():
    with pytest.raises(ValueError):
        persist_license("", "SY-x.y")


def test_load_license_round_trip(tmp_path):
    want = "SY-test-key-payload.signature"
    persist_license(tmp_path, "  " + want + "\n")
    assert load_license_from_disk(tmp_path) == want


def test_load_license_missing_returns_empty(tmp_path):
    assert load_license_from_disk(tmp_path) == ""
    assert load_license_from_disk("") == ""


@pytest.mark.parametrize("key", ["not-a-key", "SY-fake.fake", "", "SY-nodot"])
def test_bogus_keys_invalid(key):
    assert is_valid_license_key(key) is False


def test_valid_signed_key(signing_key):
    key = make_key(signing_key, {"p": "permit", "tier": "individual"})
    claims = validate_license_key(key, "permit")
    assert claims.tier == "individual"
    assert is_valid_license_key(key) is True


def test_tampered_signature_rejected(signing_key):
    key = make_key(signing_key, {"p": "permit"})
    other = make_key(Ed25519PrivateKey.generate(), {"p": "permit"})
    forged = key.split(".")[0] + "." + other.split(".")[1]
    assert validate_license_key(forged, "permit") is None


def test_padded_base64_rejected(signing_key):
    payload = json.dumps({"p": "permit"}).encode() + b"  "
    padded = base64.urlsafe_b64encode(payload).decode()
    assert padded.endswith("=")
    key = "SY-" + padded + "." + _b64(signing_key.sign(payload))
    assert validate_license_key(key, "permit") is None


def test_product_checks(signing_key):
    assert validate_license_key(make_key(signing_key, {"p": "other"}), "permit") is None
    assert validate_license_key(make_key(signing_key, {"p": "stockyard"}), "permit")
    assert validate_license_key(make_key(signing_key, {"p": "*"}), "permit")


def test_expired_key_rejected(signing_key):
    key = make_key(signing_key, {"p": "permit", "x": int(time.time()) - 60})
    assert validate_license_key(key, "permit") is None


def test_default_limits_without_key(tmp_path):
    assert default_limits(tmp_path).tier == "none"


def test_default_limits_invalid_key_on_disk(tmp_path):
    persist_license(tmp_path, "SY-fake.fake")
    assert default_limits(tmp_path).tier == "none"


def test_default_limits_tool_access(signing_key, tmp_path, monkeypatch):
    denied = make_key(signing_key, {"tier": "team", "tools": ["other"]})
    monkeypatch.setenv("STOCKYARD_LICENSE_KEY", denied)
    assert default_limits(tmp_path).tier == "none"
    allowed = make_key(signing_key, {"tier": "team", "tools": ["permit"]})
    monkeypatch.setenv("STOCKYARD_LICENSE_KEY", allowed)
    assert default_limits(tmp_path).tier == "paid"


def test_default_limits_reads_disk(signing_key, tmp_path):
    persist_license(tmp_path, make_key(signing_key, {"tier": "individual"}))
    assert default_limits(tmp_path) == paid_limits()


def test_default_limits_active_trial(signing_key, tmp_path, monkeypatch):
    key = make_key(signing_key, {"tier": "*", "trial_end": "2099-12-31T00:00:00Z"})
    monkeypatch.setenv("STOCKYARD_LICENSE_KEY", key)
    assert default_limits(tmp_path) == trial_limits("2099-12-31T00:00:00Z")


def test_default_limits_expired_trial(signing_key, tmp_path, monkeypatch):
    key = make_key(signing_key, {"tier": "*", "trial_end": "2000-01-01T00:00:00Z"})
    monkeypatch.setenv("STOCKYARD_LICENSE_KEY", key)
    assert default_limits(tmp_path) == expired_limits()


def test_default_limits_trial_over_but_subscribed(signing_key, tmp_path, monkeypatch):
    key = make_key(
        signing_key,
        {"tier": "*", "trial_end": "2000-01-01T00:00:00Z", "x": int(time.time()) + 3600},
    )
    monkeypatch.setenv("STOCKYARD_LICENSE_KEY", key)
    assert default_limits(tmp_path) == paid_limits()


def test_tier_info_none():
    info = tier_info(no_license())
    assert info["tier"] == "none"
    assert "message" in info
    assert info["upgrade_url"] == licensing.UPGRADE_URL


def test_tier_info_expired():
    info = tier_info(expired_limits())
    assert info["expired"] is True
    assert info["tier"] == "expired"


def test_tier_info_trial():
    info = tier_info(trial_limits("2099-12-31T00:00:00Z"))
    assert info["trial_end"] == "2099-12-31T00:00:00Z"
    assert info["days_remaining"] > 0
    assert "expired" not in info


def test_tier_info_paid():
    assert set(tier_info(paid_limits())) == {"tier", "upgrade_url"}