"""
pahe.win downloader: resolves a landing page into a file on disk.

Pipeline (strictly sequential, every stage runs once):
  1. validate     — the input must look like https://pahe.win/<id>
  2. landing page — GET it, pull the Kwik link out of its inline script
  3. kwik page    — GET it (keeping its cookies), find the packed token script
  4. decode       — run the token script in a js2py sandbox, capture the form
  5. form         — read action + named fields from the decoded form
  6. submit       — multipart POST with cookies, referer and browser UA
  7. write        — stream the response body to DOWNLOADS_DIR

Any stage that comes back empty ends the run with an ErrorDetail.

Environment variables:
  PAHEDL_USER_AGENT           — override the browser User-Agent sent with the form
  PAHEDL_HTTP_TIMEOUT_SECONDS — network timeout; unset means wait forever
  PAHEDL_DECODE_TIMEOUT_SECONDS, PAHEDL_WRITE_HIGH_WATER_MARK, DOWNLOADS_DIR
                              — see sandbox.py, writer.py, storage.py
"""

import os
import logging
from typing import List, Optional, Tuple
from urllib.parse import urljoin

import httpx

from .forms import extract_form_markup, synthesize_form
from .models import Cookie, DownloadResult, ErrorCode, ErrorDetail, SynthesizedForm
from .pages import fetch_page, find_kwik_link, find_token_script, script_text, validate_pahe_url
from .sandbox import DecodeContext
from .storage import StorageManager, storage as default_storage
from .writer import FileSink, ProgressCallback, derive_target, write_stream

logger = logging.getLogger(__name__)

USER_AGENT = os.getenv(
    "PAHEDL_USER_AGENT",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:141.0) Gecko/20100101 Firefox/141.0",
)
_timeout_env = os.getenv("PAHEDL_HTTP_TIMEOUT_SECONDS", "").strip()
HTTP_TIMEOUT_SECONDS: Optional[float] = float(_timeout_env) if _timeout_env else None


def build_cookie_header(cookies: List[Cookie]) -> str:
    return "; ".join(f"{c.name}={c.value}" for c in cookies)


def multipart_request(fields: List[Tuple[str, str]], headers: dict) -> dict:
    """httpx request kwargs for a multipart/form-data body, even an empty one."""
    if fields:
        return {"files": [(name, (None, value)) for name, value in fields], "headers": headers}
    # httpx drops the body entirely for an empty files list
    boundary = os.urandom(16).hex()
    return {
        "content": f"--{boundary}--\r\n".encode("ascii"),
        "headers": {**headers, "Content-Type": f"multipart/form-data; boundary={boundary}"},
    }


class PaheWinDownloader:
    """Single-shot pahe.win -> Kwik -> file downloader."""

    def __init__(
        self,
        storage: Optional[StorageManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = USER_AGENT,
        timeout: Optional[float] = HTTP_TIMEOUT_SECONDS,
    ):
        self.storage = storage or default_storage
        self.transport = transport
        self.user_agent = user_agent
        self.timeout = timeout

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            follow_redirects=True,
            timeout=self.timeout,
        )

    @staticmethod
    def _fail(code: ErrorCode, stage: str, message: str, **details) -> Tuple[None, ErrorDetail]:
        logger.error(f"❌ [{stage}] {message}")
        return None, ErrorDetail(code=code, stage=stage, message=message, details=details or None)

    def _submission_headers(self, cookies: List[Cookie], referer: str) -> dict:
        headers = {
            "Referer": referer,
            "User-Agent": self.user_agent,
        }
        if cookies:
            headers["Cookie"] = build_cookie_header(cookies)
        return headers

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def resolve_form(
        self,
        client: httpx.AsyncClient,
        page_url: str,
        cookies: List[Cookie],
        decoder: DecodeContext,
    ) -> Tuple[Optional[Tuple[str, SynthesizedForm]], Optional[ErrorDetail]]:
        """
        Walk landing page -> Kwik page -> decoded form.

        Returns ((kwik_url, form), None) or (None, error). Cookies set by the
        Kwik page are appended to ``cookies``.
        """
        logger.info(f"🌐 Getting page content from: {page_url}")
        # Landing page cookies are not needed by Kwik and are not kept
        landing = await fetch_page(client, page_url)
        if landing is None:
            return self._fail(ErrorCode.FETCH_FAILED, "landing_page", "Failed to fetch page content", url=page_url)

        kwik_url = find_kwik_link(landing)
        if not kwik_url:
            return self._fail(ErrorCode.EXTRACTION_FAILED, "kwik_link", "Kwik download link not found", url=page_url)
        logger.info(f"🔗 Kwik download link found: {kwik_url}")

        kwik_page = await fetch_page(client, kwik_url, cookies)
        if kwik_page is None:
            return self._fail(ErrorCode.FETCH_FAILED, "kwik_page", "Failed to fetch Kwik page", url=kwik_url)

        token_script = find_token_script(kwik_page)
        if token_script is None:
            return self._fail(ErrorCode.EXTRACTION_FAILED, "token_script", "Token script not found", url=kwik_url)

        logger.info("🔐 Decoding token script in sandbox...")
        decoded = await decoder.decode(script_text(token_script))
        markup = extract_form_markup(decoded) if decoded is not None else None
        if not markup:
            return self._fail(ErrorCode.DECODE_FAILED, "decode", "Could not decode the token script", url=kwik_url)

        form = synthesize_form(markup, kwik_url)
        if form is None:
            return self._fail(ErrorCode.EXTRACTION_FAILED, "form", "No form found in decoded token", url=kwik_url)

        return (kwik_url, form), None

    async def download(
        self,
        page_url: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Tuple[Optional[DownloadResult], Optional[ErrorDetail]]:
        """
        Download the file behind a pahe.win landing page.

        Returns (result, None) on success.
        Returns (None, error) if any stage fails; nothing is retried.
        """
        if validate_pahe_url(page_url) is None:
            return self._fail(ErrorCode.INVALID_INPUT, "validate", "Invalid URL", url=page_url)

        logger.info(f"🚀 Starting download: {page_url}")
        cookies: List[Cookie] = []

        with DecodeContext() as decoder:
            async with self._client() as client:
                resolved, error = await self.resolve_form(client, page_url, cookies, decoder)
                if error:
                    return None, error
                kwik_url, form = resolved
                try:
                    action_url = urljoin(kwik_url, form.action_url)
                except ValueError as e:
                    return self._fail(
                        ErrorCode.EXTRACTION_FAILED, "form", f"Malformed form action: {e}", action=form.action_url
                    )

                logger.info(f"📤 Submitting {len(form.fields)} form fields to: {action_url}")
                try:
                    async with client.stream(
                        "POST",
                        action_url,
                        **multipart_request(form.fields, self._submission_headers(cookies, kwik_url)),
                    ) as response:
                        if not response.is_success:
                            return self._fail(
                                ErrorCode.SUBMISSION_REJECTED,
                                "submit",
                                f"Server rejected the form: {response.status_code} {response.reason_phrase}",
                                status_code=response.status_code,
                                reason=response.reason_phrase,
                            )
                        return await self._save(page_url, kwik_url, action_url, response, on_progress)
                except httpx.InvalidURL as e:
                    return self._fail(
                        ErrorCode.EXTRACTION_FAILED, "form", f"Malformed form action: {e}", action=form.action_url
                    )
                except httpx.HTTPError as e:
                    return self._fail(ErrorCode.FETCH_FAILED, "submit", f"Form submission failed: {e}", url=action_url)

    async def _save(
        self,
        page_url: str,
        kwik_url: str,
        action_url: str,
        response: httpx.Response,
        on_progress: Optional[ProgressCallback],
    ) -> Tuple[Optional[DownloadResult], Optional[ErrorDetail]]:
        target = derive_target(response)
        size = f"{target.size_bytes / 1024 / 1024:.2f} MB" if target.size_bytes is not None else "unknown size"
        logger.info(f"📦 {target.filename} ({target.mime_type}, {size})")

        try:
            path = self.storage.get_download_path(target.filename)
            sink = FileSink(path)
            await sink.open()
        except (OSError, ValueError) as e:
            return self._fail(
                ErrorCode.WRITE_FAILED, "write", f"Failed to open file for writing: {e}", filename=target.filename
            )

        logger.info(f"💾 Saving file to: {path}")
        bytes_written, write_error = await write_stream(
            response.aiter_bytes(), sink, target.size_bytes, on_progress
        )
        if write_error:
            return self._fail(ErrorCode.WRITE_FAILED, "write", f"Error writing to file: {write_error}", path=str(path))

        logger.info(f"✅ File saved successfully: {path} ({bytes_written} bytes)")
        return DownloadResult(
            page_url=page_url,
            kwik_url=kwik_url,
            action_url=action_url,
            status_code=response.status_code,
            final_url=str(response.url),
            target=target,
            file_path=str(path),
            bytes_written=bytes_written,
        ), None


# Global singleton
downloader = PaheWinDownloader()
