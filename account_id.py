"""
Account identity codec.

An account id packs the bridge binding of an account into one string:

    <type>:<version>:<currency_id>:<xpub_or_address>:<derivation_mode>

Inside a field "%" is written "%25" and ":" is written "%3A", so no field can
contain the delimiter unescaped. The encoding is persisted by clients and must
stay stable across releases.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from bridge_errors import MalformedIdentity

SEPARATOR = ":"
FIELD_COUNT = 5

_ESCAPES = {"%": "%25", ":": "%3A"}
_UNESCAPES = {v: k for k, v in _ESCAPES.items()}
_ESCAPE_RE = re.compile(r"[%:]")
_UNESCAPE_RE = re.compile(r"%25|%3A")
_STRAY_PERCENT_RE = re.compile(r"%(?!25|3A)")


@dataclass(frozen=True)
class AccountIdentity:
    """Decoded form of an account id."""

    type: str
    version: str
    currency_id: str
    xpub_or_address: str
    derivation_mode: str = ""

    def with_bridge(self, type: str, version: str = "1") -> AccountIdentity:
        """Same account, bound to another bridge implementation."""
        return replace(self, type=type, version=version)


def _escape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(0)], value)


def _unescape(value: str) -> str:
    return _UNESCAPE_RE.sub(lambda m: _UNESCAPES[m.group(0)], value)


def _check_fields(identity: AccountIdentity) -> None:
    for name in ("type", "version", "currency_id", "xpub_or_address"):
        value = getattr(identity, name)
        if not isinstance(value, str) or not value:
            raise MalformedIdentity(f"Account identity field {name!r} must be a non-empty string")
    if not isinstance(identity.derivation_mode, str):
        raise MalformedIdentity("Account identity field 'derivation_mode' must be a string")


def encode_account_id(identity: AccountIdentity) -> str:
    _check_fields(identity)
    return SEPARATOR.join(
        _escape(v)
        for v in (
            identity.type,
            identity.version,
            identity.currency_id,
            identity.xpub_or_address,
            identity.derivation_mode,
        )
    )


def decode_account_id(account_id: str) -> AccountIdentity:
    if not isinstance(account_id, str):
        raise MalformedIdentity("Account id must be a string", account_id=account_id)
    parts = account_id.split(SEPARATOR)
    if len(parts) != FIELD_COUNT:
        raise MalformedIdentity(
            f"Account id must have {FIELD_COUNT} fields, got {len(parts)}",
            account_id=account_id,
        )
    if any(_STRAY_PERCENT_RE.search(p) for p in parts):
        raise MalformedIdentity("Account id contains an invalid escape", account_id=account_id)

    identity = AccountIdentity(*(_unescape(p) for p in parts))
    try:
        _check_fields(identity)
    except MalformedIdentity as exc:
        raise MalformedIdentity(str(exc), account_id=account_id) from exc
    return identity
