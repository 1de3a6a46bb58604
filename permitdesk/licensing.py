"""License keys, tiers and the limits they grant."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

logger = logging.getLogger(__name__)

PUBLIC_KEY_HEX = "3af8f9593b3331c27994f1eeacf111c727ff6015016b0af44ed3ca6934d40b13"
PRODUCT = "permit"
LICENSE_FILENAME = "license.txt"
LICENSE_ENV_VAR = "STOCKYARD_LICENSE_KEY"
UPGRADE_URL = "https://example.com/upgrade/"

_SIGNATURE_SIZE = 64
_PUBLIC_KEY_SIZE = 32
_B64_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")
_RFC3339 = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})"
)
_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Limits:
    """What the current license allows."""

    tier: str
    max_items: int = 0
    trial_end: str = ""
    trial_expired: bool = False


@dataclass(frozen=True)
class LicenseClaims:
    """The signed payload of a license key."""

    p: str = ""
    tier: str = ""
    tools: tuple[str, ...] = field(default_factory=tuple)
    trial_end: str = ""
    exp: int = 0


def trial_limits(trial_end: str) -> Limits:
    return Limits(tier="trial", trial_end=trial_end)


def paid_limits() -> Limits:
    return Limits(tier="paid")


def no_license() -> Limits:
    return Limits(tier="none")


def expired_limits() -> Limits:
    return Limits(tier="expired", trial_expired=True)


def persist_license(data_dir: str | os.PathLike, key: str) -> None:
    """Write a license key to ``data_dir/license.txt``, readable by the owner only."""
    if not data_dir:
        raise ValueError("data directory is required")
    os.makedirs(data_dir, mode=0o700, exist_ok=True)
    path = os.path.join(data_dir, LICENSE_FILENAME)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(key.strip())


def load_license_from_disk(data_dir: str | os.PathLike) -> str:
    """Return the persisted license key, or an empty string if there is none."""
    if not data_dir:
        return ""
    try:
        with open(os.path.join(data_dir, LICENSE_FILENAME), encoding="utf-8") as handle:
            return handle.read().strip()
    except (OSError, UnicodeDecodeError):
        return ""


def is_valid_license_key(key: str) -> bool:
    return validate_license_key(key, PRODUCT) is not None


def _decode_raw_urlsafe(text: str) -> bytes:
    if not _B64_ALPHABET.fullmatch(text) or len(text) % 4 == 1:
        raise ValueError("invalid base64")
    padded = text + "=" * (-len(text) % 4)
    return base64.b64decode(padded, altchars=b"-_", validate=True)


def _claims_from_json(payload: bytes) -> LicenseClaims | None:
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError):
        return None
    if data is None:
        return LicenseClaims()
    if not isinstance(data, dict):
        return None

    def text(name: str) -> str | None:
        value = data.get(name)
        if value is None:
            return ""
        return value if isinstance(value, str) else None

    product, tier, trial_end = text("p"), text("tier"), text("trial_end")
    if product is None or tier is None or trial_end is None:
        return None
    tools = data.get("tools") or []
    if not isinstance(tools, list) or not all(isinstance(t, str) for t in tools):
        return None
    exp = data.get("x") or 0
    if not isinstance(exp, int) or isinstance(exp, bool):
        return None
    return LicenseClaims(
        p=product, tier=tier, tools=tuple(tools), trial_end=trial_end, exp=exp
    )


def validate_license_key(key: str, product: str) -> LicenseClaims | None:
    """Check a ``SY-<payload>.<signature>`` key and return its claims if valid."""
    if not key.startswith("SY-"):
        return None
    parts = key[3:].split(".", 1)
    if len(parts) != 2:
        return None
    try:
        payload = _decode_raw_urlsafe(parts[0])
        signature = _decode_raw_urlsafe(parts[1])
    except (ValueError, binascii.Error):
        return None
    if len(signature) != _SIGNATURE_SIZE:
        return None
    try:
        public_key_bytes = bytes.fromhex(PUBLIC_KEY_HEX)
    except ValueError:
        return None
    if len(public_key_bytes) != _PUBLIC_KEY_SIZE:
        return None
    try:
        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(signature, payload)
    except (InvalidSignature, ValueError):
        return None
    claims = _claims_from_json(payload)
    if claims is None:
        return None
    if claims.exp > 0 and time.time() > claims.exp:
        return None
    if claims.p not in ("", "*", "stockyard", product):
        return None
    return claims


def _parse_rfc3339(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; anything unparsable becomes the zero time."""
    match = _RFC3339.fullmatch(text)
    if not match:
        return _ZERO_TIME
    try:
        moment = datetime.strptime(match["base"], "%Y-%m-%dT%H:%M:%S")
    except ValueError:
        return _ZERO_TIME
    if match["frac"]:
        moment = moment.replace(microsecond=int((match["frac"] + "000000")[:6]))
    zone = match["tz"]
    if zone == "Z":
        tzinfo = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tzinfo = timezone(sign * offset)
    return moment.replace(tzinfo=tzinfo)


def _days_until(moment: datetime) -> int:
    return int((moment - datetime.now(timezone.utc)).total_seconds() / 86400)


def default_limits(data_dir: str | os.PathLike) -> Limits:
    """Work out the limits from the environment key or the persisted key."""
    key = os.environ.get(LICENSE_ENV_VAR, "") or load_license_from_disk(data_dir)
    if not key:
        logger.info("[license] No license key. Start a trial to continue.")
        return no_license()
    claims = validate_license_key(key, PRODUCT)
    if claims is None:
        logger.info("[license] Invalid license key")
        return no_license()

    if claims.tier not in ("individual", "*") and not any(
        tool in (PRODUCT, "*") for tool in claims.tools
    ):
        logger.info("[license] Tool %s not in licensed tools", PRODUCT)
        return no_license()

    if claims.trial_end:
        trial_end = _parse_rfc3339(claims.trial_end)
        if datetime.now(timezone.utc) > trial_end:
            if claims.exp > 0 and time.time() <= claims.exp:
                logger.info("[license] Paid subscription active — unlimited")
                return paid_limits()
            logger.info("[license] Trial expired")
            return expired_limits()
        logger.info("[license] Trial active — %d days remaining", _days_until(trial_end))
        return trial_limits(claims.trial_end)

    logger.info("[license] Paid license valid — unlimited")
    return paid_limits()


def tier_info(limits: Limits) -> dict[str, Any]:
    """Describe the current tier for the dashboard."""
    info: dict[str, Any] = {"tier": limits.tier}
    if limits.trial_end:
        info["trial_end"] = limits.trial_end
        info["days_remaining"] = _days_until(_parse_rfc3339(limits.trial_end))
    if limits.trial_expired:
        info["expired"] = True
        info["message"] = "Trial ended. Subscribe to continue."
    if limits.tier == "none":
        info["message"] = "No license. Start a trial to continue."
    info["upgrade_url"] = UPGRADE_URL
    return info