"""Cookie helpers for the visitor and analytics-correlation cookies.

The jar is scoped to one request: it reads the inbound cookies, records
outbound ones and copies them onto the response once the turn is over.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime

import tldextract
from pydantic import BaseModel
from starlette.responses import Response

# Bundled public suffix snapshot only, never fetched over the network. Private
# suffixes such as herokuapp.com and github.io count as public suffixes.
_extract = tldextract.TLDExtract(cache_dir=None, suffix_list_urls=(), include_psl_private_domains=True)


def cookie_domain(host: str) -> str | None:
    """Wildcard cookie domain for a request host.

    ``foo.bar.baz.boom.com`` becomes ``.boom.com``. Hosts without a public
    suffix (``localhost``, IP addresses) have no registrable domain and get
    ``None``, which leaves the cookie host-only.
    """
    parts = _extract(host)
    if not parts.domain or not parts.suffix:
        return None
    return f".{parts.domain}.{parts.suffix}"


def one_year_from(instant: datetime) -> datetime:
    """Same calendar date and time one year later; 29 February maps to 28 February."""
    try:
        return instant.replace(year=instant.year + 1)
    except ValueError:
        return instant.replace(year=instant.year + 1, day=28)


class ResponseCookie(BaseModel):
    value: str
    domain: str | None = None
    secure: bool = False
    httponly: bool = False
    expires: datetime | None = None
    path: str = "/"

    model_config = {"frozen": True}


class CookieJar:
    def __init__(self, inbound: Mapping[str, str] | None = None) -> None:
        self._inbound = dict(inbound or {})
        self.outbound: dict[str, ResponseCookie] = {}
        self._locked = False

    def get(self, name: str) -> str | None:
        if name in self.outbound:
            return self.outbound[name].value
        return self._inbound.get(name)

    def set(self, name: str, cookie: ResponseCookie) -> None:
        if self._locked:
            raise RuntimeError(f"cookie jar is locked, cannot set {name!r}")
        self.outbound[name] = cookie

    def lock(self) -> None:
        self._locked = True

    @property
    def locked(self) -> bool:
        return self._locked

    def apply(self, response: Response) -> None:
        """Write every outbound cookie onto the response."""
        for name, cookie in self.outbound.items():
            response.set_cookie(
                name,
                cookie.value,
                expires=cookie.expires,
                path=cookie.path,
                domain=cookie.domain,
                secure=cookie.secure,
                httponly=cookie.httponly,
            )
