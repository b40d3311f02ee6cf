"""Destination, label, id and scan metadata validation.

Destinations end up behind a public redirect, so normalization is strict:
only absolute http(s) addresses with a real host are accepted, and outside of
development the redirect must not point into loopback or private networks.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from urllib.parse import urlsplit, urlunsplit

from app.core.errors import InvalidDestinationAppError, ValidationAppError

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "https"
ALLOWED_SCHEMES = frozenset({"http", "https"})
BLOCKED_SCHEMES = frozenset({"javascript", "data", "vbscript", "file", "about", "blob"})

MAX_LABEL_LENGTH = 100
MAX_RECORD_ID_LENGTH = 50
MAX_USER_AGENT_LENGTH = 500
MAX_REFERER_LENGTH = 2048
MAX_SOURCE_ADDRESS_LENGTH = 64
MAX_REGION_LENGTH = 16

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_SCHEME_PREFIX = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_EXPLICIT_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")
_HOSTNAME = re.compile(r"^(?=.{1,253}$)([a-z0-9_](?:[a-z0-9_\-]{0,61}[a-z0-9_])?)(\.[a-z0-9_](?:[a-z0-9_\-]{0,61}[a-z0-9_])?)*\.?$")
_HARMFUL_LABEL = re.compile(r"<script|javascript:|on\w+\s*=", re.IGNORECASE)
_RECORD_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_NUMERIC_LABEL = re.compile(r"^(?:[0-9]+|0[xX][0-9a-fA-F]*)$")
_DECIMAL_DIGITS = re.compile(r"^[0-9]+$")
_OCTAL_DIGITS = re.compile(r"^[0-7]+$")
_HEX_DIGITS = re.compile(r"^[0-9a-fA-F]*$")


def _reject(reason: str, message: str, **extra: int) -> InvalidDestinationAppError:
    logger.info("destination.rejected", extra={"reason": reason})
    return InvalidDestinationAppError(
        code="invalid_destination",
        message=message,
        details={"reason": reason, **extra},  # type: ignore[typeddict-item]
    )


def _with_default_scheme(value: str) -> str:
    if _EXPLICIT_SCHEME.match(value):
        return value
    if value.startswith("//"):
        return f"{DEFAULT_SCHEME}:{value}"
    return f"{DEFAULT_SCHEME}://{value}"


def _ipv4_number(part: str) -> int | None:
    if part[:2] in ("0x", "0X"):
        digits = part[2:]
        if not _HEX_DIGITS.match(digits):
            return None
        return int(digits, 16) if digits else 0
    if len(part) > 1 and part.startswith("0"):
        return int(part[1:], 8) if _OCTAL_DIGITS.match(part[1:]) else None
    return int(part) if _DECIMAL_DIGITS.match(part) else None


def _ends_in_number(hostname: str) -> bool:
    labels = hostname.split(".")
    if len(labels) > 1 and labels[-1] == "":
        labels.pop()
    return bool(_NUMERIC_LABEL.match(labels[-1]))


def parse_ipv4_host(hostname: str) -> ipaddress.IPv4Address | None:
    """Parse an IPv4 host in any spelling browsers accept.

    Besides dotted quads this covers the shortened (``127.1``), single number
    (``2130706433``), hex (``0x7f000001``) and octal (``0177.0.0.1``) forms,
    all of which a browser silently rewrites to a dotted quad.

    Returns:
        The address, or None if ``hostname`` is not a numeric IPv4 host.
    """

    parts = hostname.split(".")
    if len(parts) > 1 and parts[-1] == "":
        parts.pop()
    if len(parts) > 4:
        return None

    numbers = [_ipv4_number(part) for part in parts]
    if any(n is None for n in numbers):
        return None

    *head, last = numbers
    if any(n > 255 for n in head) or last >= 256 ** (5 - len(numbers)):
        return None

    value = last
    for position, n in enumerate(head):
        value += n * 256 ** (3 - position)
    return ipaddress.IPv4Address(value)


def is_private_host(hostname: str) -> bool:
    """Return True for localhost names and non-public literal IP addresses.

    Hostnames are not resolved; only ``localhost`` names and literal
    addresses, including the numeric IPv4 spellings understood by
    :func:`parse_ipv4_host`, are classified.

    Args:
        hostname: Lower-cased host without brackets or port.

    Returns:
        Whether the host points at loopback, private, link-local, reserved or
        unspecified address space.
    """

    host = hostname.rstrip(".")
    if host == "localhost" or host.endswith(".localhost"):
        return True

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        address = parse_ipv4_host(host)
        if address is None:
            return False

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_reserved
        or address.is_unspecified
        or address.is_multicast
    )


def normalize_destination(
    raw: str,
    *,
    max_length: int = 2048,
    allow_private_hosts: bool = False,
) -> str:
    """Validate a user-supplied destination and return its normalized form.

    Steps: trim, length and control character checks, blocked scheme check,
    default ``https://`` when no scheme is given, absolute address parsing,
    host checks. Numeric IPv4 hosts are rewritten to their dotted quad.

    Args:
        raw: Destination exactly as submitted.
        max_length: Maximum accepted length after trimming.
        allow_private_hosts: Accept loopback/private hosts (development only).

    Returns:
        Normalized absolute address with lower-cased scheme and host.

    Raises:
        InvalidDestinationAppError: With ``details["reason"]`` naming the rule.
    """

    value = (raw or "").strip()

    if not value:
        raise _reject("destination_required", "Destination is required.")

    if len(value) > max_length:
        raise _reject(
            "destination_too_long",
            f"Destination is too long (maximum {max_length} characters).",
            max_length=max_length,
            actual_length=len(value),
        )

    if _CONTROL_CHARS.search(value):
        raise _reject("control_characters", "Destination contains control characters.")

    scheme_match = _SCHEME_PREFIX.match(value)
    if scheme_match and scheme_match.group(1).lower() in BLOCKED_SCHEMES:
        raise _reject("disallowed_scheme", "Destination protocol is not allowed.")

    candidate = _with_default_scheme(value)

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise _reject("malformed_destination", "Destination is not a valid address.") from exc

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise _reject("unsupported_scheme", "Only http and https destinations are supported.")

    if parts.username is not None or parts.password is not None:
        raise _reject("embedded_credentials", "Destination must not embed credentials.")

    hostname = parts.hostname
    if not hostname:
        raise _reject("malformed_destination", "Destination is not a valid address.")

    if ":" not in hostname and _ends_in_number(hostname):
        ipv4 = parse_ipv4_host(hostname)
        if ipv4 is None:
            raise _reject("malformed_destination", "Destination host is not valid.")
        hostname = str(ipv4)

    if not _is_valid_host(hostname):
        raise _reject("malformed_destination", "Destination host is not valid.")

    if not allow_private_hosts and is_private_host(hostname):
        raise _reject("private_destination", "Private network destinations are not allowed.")

    netloc = f"[{hostname}]" if ":" in hostname else hostname
    if port is not None:
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


def _is_valid_host(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        pass

    try:
        ascii_host = hostname.encode("idna").decode("ascii")
    except UnicodeError:
        return False
    return bool(_HOSTNAME.match(ascii_host))


def sanitize_label(label: str | None) -> str | None:
    """Trim a label and reject script-like content.

    Returns:
        The cleaned label, or None when it is empty.

    Raises:
        ValidationAppError: If the label is too long or looks like markup.
    """

    if label is None:
        return None

    cleaned = label.strip()
    if not cleaned:
        return None

    if len(cleaned) > MAX_LABEL_LENGTH:
        raise ValidationAppError(
            code="invalid_label",
            message=f"Label is too long (maximum {MAX_LABEL_LENGTH} characters).",
            details={"max_length": MAX_LABEL_LENGTH, "actual_length": len(cleaned)},
        )

    if _HARMFUL_LABEL.search(cleaned) or _CONTROL_CHARS.search(cleaned):
        raise ValidationAppError(
            code="invalid_label",
            message="Label contains invalid content.",
        )

    return cleaned.replace("<", "").replace(">", "")


def is_valid_record_id(record_id: str | None) -> bool:
    return bool(
        record_id
        and len(record_id) <= MAX_RECORD_ID_LENGTH
        and _RECORD_ID.match(record_id)
    )


def clip_metadata(value: str | None, max_length: int) -> str:
    """Best-effort scan metadata: None becomes "", control chars are dropped,
    long values are truncated."""

    if not value:
        return ""
    return _CONTROL_CHARS.sub("", value).strip()[:max_length]
