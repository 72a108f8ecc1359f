"""Booking identifier extraction from raw QR payload text.

Three payload generations are in circulation and must all keep scanning:

* JSON fragments such as ``{"bookingId":"686b52a5..."}``
* booking URLs such as ``https://tixbook.com/booking/686b52a5...``
* the bare 24-32 character hex token

The first matching form wins, in that order.
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Pattern, Sequence

logger = logging.getLogger(__name__)

DEFAULT_BOOKING_HOSTS: Sequence[str] = ("tixbook.com", "www.tixbook.com")
DEFAULT_TOKEN_FIELDS: Sequence[str] = ("bookingId", "booking_id", "ticketId", "ticket_id")

_HEX_TOKEN = r"[0-9a-fA-F]{24,32}"
_BARE_TOKEN_RE = re.compile(rf"^{_HEX_TOKEN}$")


def _json_field_pattern(fields: Iterable[str]) -> Optional[Pattern[str]]:
    names = [re.escape(name) for name in fields if name]
    if not names:
        return None
    # Key match is case-insensitive; the value is returned verbatim.
    return re.compile(r'"(?i:%s)"\s*:\s*"([^"\\]+)"' % "|".join(names))


def _url_pattern(hosts: Iterable[str]) -> Optional[Pattern[str]]:
    names = [re.escape(host) for host in hosts if host]
    if not names:
        return None
    return re.compile(
        r"https?://(?:%s)/booking/(%s)(?![0-9a-fA-F])" % ("|".join(names), _HEX_TOKEN),
        re.IGNORECASE,
    )


class IdentifierExtractor:
    """Pure parser from raw payload text to a booking identifier."""

    def __init__(
        self,
        *,
        booking_hosts: Iterable[str] = DEFAULT_BOOKING_HOSTS,
        token_fields: Iterable[str] = DEFAULT_TOKEN_FIELDS,
    ) -> None:
        self._json_re = _json_field_pattern(token_fields)
        self._url_re = _url_pattern(booking_hosts)

    def extract(self, raw: object) -> Optional[str]:
        """Return the booking identifier in ``raw`` or ``None`` when nothing matches."""
        if not isinstance(raw, str) or not raw:
            return None

        if self._json_re is not None:
            match = self._json_re.search(raw)
            if match:
                return match.group(1)

        if self._url_re is not None:
            match = self._url_re.search(raw)
            if match:
                return match.group(1)

        trimmed = raw.strip()
        if _BARE_TOKEN_RE.match(trimmed):
            return trimmed

        logger.debug("extract: no identifier in payload (len=%d)", len(raw))
        return None


_default_extractor = IdentifierExtractor()


def extract(raw: object) -> Optional[str]:
    """Extract with the default hosts and token fields."""
    return _default_extractor.extract(raw)


__all__ = ["IdentifierExtractor", "extract", "DEFAULT_BOOKING_HOSTS", "DEFAULT_TOKEN_FIELDS"]
