"""
Helix Spreadsheet Gateway: reads JSON sheets published by the portal's
content origin (``<HELIX_ORIGIN><path>.json``).

All outbound HTTP calls to the content origin go through this class.

  - Optional ``token`` authorization (HELIX_ORIGIN_AUTHENTICATION)
  - Retry: max 1 extra attempt after a short backoff
  - Timeout: 15 s (configurable per call)
  - Structured result returned to the caller; never raises

Testability: pass a mock `session` to HelixGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import logging
import time

import requests

logger = logging.getLogger(__name__)

_RETRY_MAX = 1
_RETRY_BACKOFF_SECONDS = [1]

_DEFAULT_TIMEOUT = 15


class GatewayResult:
    """Structured return value from HelixGateway calls.

    Attributes:
        ok:          True if the call succeeded (HTTP 2xx + parseable JSON).
        status_code: HTTP status code (None if network-level failure).
        data:        Converted sheet (dict keyed by ``key`` or list of rows).
        error:       Human-readable error message or None.
        duration_ms: Round-trip latency in milliseconds.
    """

    def __init__(self, ok, status_code, data, error, duration_ms):
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


def split_arrays(row: dict, arrays) -> dict:
    """Turn comma-separated cells into trimmed lists (missing/empty → [])."""
    for column in arrays or ():
        value = row.get(column)
        if value:
            row[column] = [item.strip() for item in str(value).split(",") if item.strip()]
        else:
            row[column] = []
    return row


def convert_sheet(rows, *, key=None, value=None, arrays=None):
    """Convert raw sheet rows.

    With ``key`` the rows become a mapping ``row[key] → row`` (or
    ``row[key] → row[value]`` when ``value`` is given); otherwise the list
    of rows is returned with array columns split.
    """
    rows = rows or []
    if key:
        converted = {}
        for row in rows:
            if value:
                converted[row.get(key)] = row.get(value)
            else:
                converted[row.get(key)] = split_arrays(dict(row), arrays)
        return converted
    return [split_arrays(dict(row), arrays) for row in rows]


class HelixGateway:
    """Content origin spreadsheet reader.

    Usage:
        gateway = HelixGateway(origin="https://main--koassets--aemsites.aem.live")
        result = gateway.fetch_sheet("/config/permissions", key="email",
                                     arrays=["permissions"])
        if result.ok:
            rows = result.data
    """

    def __init__(self, origin: str = "", token: str | None = None,
                 session: requests.Session | None = None) -> None:
        self.origin = (origin or "").rstrip("/")
        self.token = token or None
        self._session: requests.Session | None = session

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "HelixGateway":
        return cls(
            origin=config.get("HELIX_ORIGIN", ""),
            token=config.get("HELIX_ORIGIN_AUTHENTICATION"),
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        headers = {"Accept": "application/json", "Cache-Control": "no-store"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def fetch_json(self, path: str, *, timeout: int = _DEFAULT_TIMEOUT) -> GatewayResult:
        """GET ``<origin><path>.json`` with retry. Always returns a GatewayResult."""
        if not self.origin:
            return GatewayResult(False, None, None, "HELIX_ORIGIN is not configured", 0)

        url = f"{self.origin}{path}.json"
        last_error = "Unknown error"
        last_status = None

        for attempt in range(_RETRY_MAX + 1):
            t0 = time.perf_counter()
            try:
                resp = self.session.get(url, headers=self._headers(), timeout=timeout)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code
                if resp.ok:
                    try:
                        data = resp.json()
                    except ValueError:
                        logger.error("Sheet %s returned invalid JSON", url)
                        return GatewayResult(False, resp.status_code, None, "Invalid JSON response", duration_ms)
                    logger.info("Fetched sheet %s status=%d duration_ms=%d", url, resp.status_code, duration_ms)
                    return GatewayResult(True, resp.status_code, data, None, duration_ms)

                last_error = f"HTTP {resp.status_code}: {resp.reason or ''}".strip()
                logger.warning(
                    "Sheet fetch failed attempt=%d/%d status=%d url=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, url,
                )
                if resp.status_code < 500:
                    break

            except requests.Timeout:
                last_error = f"Request timed out after {timeout}s"
                logger.warning("Sheet fetch timed out attempt=%d/%d url=%s", attempt + 1, _RETRY_MAX + 1, url)

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                logger.warning(
                    "Sheet fetch network error attempt=%d/%d url=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, url, last_error,
                )

            if attempt < _RETRY_MAX:
                time.sleep(_RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)])

        logger.error("Failed to fetch spreadsheet %s: %s", url, last_error)
        return GatewayResult(False, last_status, None, last_error, 0)

    def fetch_sheet(self, path: str, *, key: str | None = None, value: str | None = None,
                    arrays=None, sheet: str | None = None,
                    timeout: int = _DEFAULT_TIMEOUT) -> GatewayResult:
        """Fetch one sheet and convert its ``data`` rows.

        ``sheet`` selects a named sheet of a multi-sheet workbook; by default
        the single-sheet ``data`` array is used.
        """
        result = self.fetch_json(path, timeout=timeout)
        if not result.ok:
            return result

        body = result.data or {}
        if sheet:
            body = body.get(sheet) or {}
        rows = body.get("data") if isinstance(body, dict) else None
        result.data = convert_sheet(rows, key=key, value=value, arrays=arrays)
        return result
