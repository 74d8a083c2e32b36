"""
Landing page handling: URL validation, page fetching and script extraction.

Everything that knows what pahe.win and Kwik markup looks like lives here
(and in forms.py), so upstream markup changes only touch these helpers.
"""

import re
import logging
from http.cookies import CookieError, SimpleCookie
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup, Tag

from .models import Cookie, DestructuredURL

logger = logging.getLogger(__name__)

PAHE_WIN_URL_RE = re.compile(r"^https?://pahe\.win/[a-z0-9]+/?(?:[?#].*)?$", re.IGNORECASE)
KWIK_LINK_RE = re.compile(r"(https?://kwik\.si/f/[a-z0-9]+)", re.IGNORECASE)

# Character table of the packer routine embedded in Kwik pages
TOKEN_SCRIPT_MARKER = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ+/"


# =========================================================================
# URL VALIDATION
# =========================================================================

def destructure_url(url: str) -> Optional[DestructuredURL]:
    """Split an absolute URL into its parts, or None if it is not one."""
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except (ValueError, AttributeError):
        return None
    if not parts.scheme or not hostname:
        return None
    return DestructuredURL(
        scheme=parts.scheme.lower(),
        hostname=hostname,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
    )


def validate_pahe_url(url: str) -> Optional[DestructuredURL]:
    """Return the destructured URL when it is a pahe.win landing page URL."""
    durl = destructure_url(url)
    if durl is None or not PAHE_WIN_URL_RE.fullmatch(url):
        return None
    return durl


# =========================================================================
# PAGE FETCHING
# =========================================================================

def parse_set_cookie_headers(headers: Iterable[str]) -> List[Cookie]:
    """Turn raw Set-Cookie header values into name/value pairs, in order."""
    cookies: List[Cookie] = []
    for header in headers:
        jar = SimpleCookie()
        try:
            jar.load(header)
        except CookieError as e:
            logger.warning(f"⚠️ Ignoring unparseable Set-Cookie header: {e}")
            continue
        for name, morsel in jar.items():
            cookies.append(Cookie(name=name, value=morsel.value))
    return cookies


async def fetch_page(
    client: httpx.AsyncClient,
    url: str,
    cookies: Optional[List[Cookie]] = None,
) -> Optional[BeautifulSoup]:
    """
    GET a page and parse it.

    When ``cookies`` is given, every cookie set by the response is appended
    to it before the body is read. Returns None on transport failure or
    when httpx refuses the URL.
    """
    try:
        resp = await client.get(url)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.error(f"❌ Failed to fetch {url}: {e}")
        return None

    if cookies is not None:
        cookies.extend(parse_set_cookie_headers(resp.headers.get_list("set-cookie")))

    if not resp.is_success:
        logger.warning(f"⚠️ {url} answered HTTP {resp.status_code}, parsing it anyway")

    return BeautifulSoup(resp.text, "html.parser")


# =========================================================================
# SCRIPT EXTRACTION
# =========================================================================

def script_text(script: Tag) -> str:
    return script.string or ""


def find_kwik_link(document: BeautifulSoup) -> Optional[str]:
    """First Kwik file-page URL in the first inline text/javascript script."""
    script = document.select_one("script[type='text/javascript']:not([src])")
    if script is None:
        logger.error("❌ No inline script on the landing page")
        return None

    match = KWIK_LINK_RE.search(script_text(script))
    if not match:
        logger.error("❌ Inline script does not mention a Kwik link")
        return None
    return match.group(1)


def find_token_script(document: BeautifulSoup) -> Optional[Tag]:
    """First script directly under <body> that carries the packer marker."""
    for script in document.select("body > script"):
        if TOKEN_SCRIPT_MARKER in script_text(script):
            return script
    logger.error("❌ Token script not found on the Kwik page")
    return None
