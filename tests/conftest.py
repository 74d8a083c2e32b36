"""
Shared fixtures and helpers for pahedl tests.

No test touches the network: every HTTP exchange goes through an
httpx.MockTransport routing table, and every file lands in tmp_path.
"""

import pathlib
import sys
from typing import Callable, Dict, List, Union

import httpx
import pytest

# ─── Path setup (must happen before any pahedl import) ───────────────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from pahedl.downloader import PaheWinDownloader  # noqa: E402
from pahedl.storage import StorageManager  # noqa: E402

# ─── Constants ───────────────────────────────────────────────────────────────

PAGE_URL = "https://pahe.win/ABCDE"
KWIK_URL = "https://kwik.si/f/xyz123"
FORM_ACTION_URL = "https://kwik.si/d/token1"
MARKER = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ+/"
FIREFOX_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:141.0) Gecko/20100101 Firefox/141.0"

LANDING_HTML = f"""<!DOCTYPE html>
<html>
<head>
  <script type="text/javascript" src="https://pahe.win/static/app.js"></script>
  <script type="text/javascript">
    $("#redirect").attr("href", "{KWIK_URL}").html("Continue");
  </script>
</head>
<body><a id="redirect" href="#">Loading...</a></body>
</html>"""

TOKEN_SCRIPT = (
    f'var _0xc = "{MARKER}";'
    """eval('<form action="/d/token1" method="POST">"""
    """<input type="hidden" name="id" value="42"></form>')"""
)

KWIK_HTML = f"""<!DOCTYPE html>
<html>
<head><script>var notTheOne = "{MARKER}";</script></head>
<body>
  <div class="download"><script>var nested = "{MARKER}";</script></div>
  <script>console.log("analytics");</script>
  <script>{TOKEN_SCRIPT}</script>
</body>
</html>"""



def kwik_page_with(token_body: str) -> str:
    """A Kwik page whose token script is the marker followed by ``token_body``."""
    return f'<html><body><script>var _0xc = "{MARKER}"; {token_body}</script></body></html>'


FILE_BYTES = b"\x00\x01video-bytes" * 1000

Handler = Callable[[httpx.Request], httpx.Response]
Route = Union[httpx.Response, Handler]


# ─── Fake upstream ───────────────────────────────────────────────────────────

class FakeUpstream:
    """Routing table for httpx.MockTransport that records every request."""

    def __init__(self, routes: Dict[str, Route]):
        self.routes = routes
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.method} {request.url.scheme}://{request.url.host}{request.url.path}"
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, text="not routed")
        if callable(route):
            return route(request)
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def find(self, method: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method]


def default_routes() -> Dict[str, Route]:
    return {
        f"GET {PAGE_URL}": lambda request: httpx.Response(
            200,
            text=LANDING_HTML,
            headers=[("set-cookie", "landing=ignored; Path=/")],
        ),
        f"GET {KWIK_URL}": lambda request: httpx.Response(
            200,
            text=KWIK_HTML,
            headers=[
                ("set-cookie", "kwik_session=abc123; Path=/; HttpOnly"),
                ("set-cookie", "srv=s1; Path=/"),
            ],
        ),
        f"POST {FORM_ACTION_URL}": lambda request: httpx.Response(
            200,
            content=FILE_BYTES,
            headers={
                "content-disposition": 'attachment; filename="Episode 01.mp4"',
                "content-length": str(len(FILE_BYTES)),
            },
        ),
    }


# ─── Per-test fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def storage(tmp_path):
    """Downloads directory for a single test."""
    return StorageManager(tmp_path)


@pytest.fixture
def upstream():
    """Fake pahe.win + Kwik with the happy-path routes installed."""
    return FakeUpstream(default_routes())


@pytest.fixture
def dl(storage, upstream):
    """A PaheWinDownloader wired to the fake upstream and tmp storage."""
    return PaheWinDownloader(storage=storage, transport=upstream.transport)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def assert_file_written(file_path, expected: bytes) -> None:
    """Assert the pipeline produced exactly ``expected`` on disk."""
    assert file_path is not None, "file_path is None — pipeline returned no file"
    p = pathlib.Path(file_path)
    assert p.exists(), f"File not found on disk: {p}"
    data = p.read_bytes()
    assert data == expected, (
        f"File content mismatch ({len(data):,} bytes on disk, {len(expected):,} expected)"
    )
