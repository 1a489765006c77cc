"""Report Store adapters.

The core never talks to the network itself; callers hand it a store that
implements :class:`ReportStore`. Two implementations ship here:

- :class:`HTTPReportStore` for the reports REST API
- :class:`InMemoryReportStore` for tests, fixtures and file-backed CLI runs
"""
from __future__ import annotations

import json
import logging
import random
import threading
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import requests

from civicwatch import __version__
from civicwatch.geo import distance_km
from civicwatch.models import Report

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


class ReportStoreError(Exception):
    """Transport, auth or payload failure talking to the Report Store."""


class ReportStore(Protocol):
    def search_nearby(self, lat: float, lng: float, radius_km: float,
                      category: Optional[str] = None, limit: Optional[int] = None) -> List[Report]:
        ...

    def create(self, report: Report) -> Report:
        ...

    def upvote(self, report_id: str) -> None:
        ...


def _unwrap(payload: Any, key: str) -> Any:
    """Pull ``key`` out of ``{"data": {key: ...}}`` or ``{key: ...}`` envelopes."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and key in data:
        return data[key]
    return payload.get(key)


def _parse_reports(payload: Any) -> List[Report]:
    rows = _unwrap(payload, "reports")
    if rows is None and isinstance(payload, list):
        rows = payload
    if not isinstance(rows, list):
        raise ReportStoreError("Unexpected response payload: no 'reports' list")
    return [Report.from_dict(r) for r in rows if isinstance(r, dict)]


class HTTPReportStore:
    """Report Store backed by the reports REST API."""

    reports_path = "/reports"
    upvote_path = "/reports/{id}/upvote"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        retry_jitter: float = 0.5,
        token: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.retry_jitter = retry_jitter
        self.token = token
        self.limit = limit
        self._session = session
        self._session_lock = threading.Lock()

    def _get_session(self) -> requests.Session:
        if self._session is None:
            with self._session_lock:
                if self._session is None:
                    s = requests.Session()
                    adapter = requests.adapters.HTTPAdapter(
                        pool_connections=4,
                        pool_maxsize=4,
                        max_retries=0,  # We handle retries ourselves
                    )
                    s.mount("https://", adapter)
                    s.mount("http://", adapter)
                    self._session = s
        return self._session

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"Civicwatch/{__version__}",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Send a request, retrying transport errors and 5xx with backoff + jitter.

        Returns the final response (which may be a 4xx). Raises ReportStoreError
        when every attempt failed at the transport level or with a 5xx.
        """
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = self._get_session().request(method, url, headers=self._headers(),
                                                   timeout=self.timeout, **kwargs)
                if resp.status_code < 500:
                    return resp
                last_error = requests.HTTPError(f"{resp.status_code} Server Error for {url}", response=resp)
            except requests.RequestException as e:
                last_error = e
            if attempt < self.max_retries:
                base_wait = self.retry_backoff * (2 ** attempt)
                wait = base_wait + random.uniform(0, base_wait * self.retry_jitter)
                logger.info(f"[Store] Retry {attempt+1}/{self.max_retries} for {method} {url} in {wait:.1f}s")
                time.sleep(wait)
        logger.warning(f"[Store] {method} {url} failed after {self.max_retries+1} attempts: {last_error}")
        raise ReportStoreError(f"{method} {url} failed: {last_error}") from last_error

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ReportStoreError(f"Invalid JSON from {resp.url}: {e}") from e

    @staticmethod
    def _error_message(resp: requests.Response, default: str) -> str:
        try:
            body = resp.json()
        except ValueError:
            return f"{default} (HTTP {resp.status_code})"
        if isinstance(body, dict) and body.get("error"):
            return f"{body['error']} (HTTP {resp.status_code})"
        return f"{default} (HTTP {resp.status_code})"

    def search_nearby(self, lat: float, lng: float, radius_km: float,
                      category: Optional[str] = None, limit: Optional[int] = None) -> List[Report]:
        """Reports within ~``radius_km`` of (lat, lng), at most ``limit`` (default: self.limit).

        If the location query fails (any non-2xx, or a 5xx that outlasts the
        retries), retries once without location parameters (the server may not
        support geo filtering).
        """
        limit = self.limit if limit is None else limit
        params: Dict[str, str] = {
            "lat": str(lat),
            "lng": str(lng),
            "radius": str(radius_km),
            "limit": str(limit),
        }
        if category:
            params["category"] = category
        try:
            resp = self._request("GET", self.reports_path, params=params)
            failure = None if resp.ok else f"HTTP {resp.status_code}"
        except ReportStoreError as e:
            failure = str(e)
        if failure:
            logger.info(f"[Store] Location search failed ({failure}), trying general search")
            fallback = {"limit": str(limit)}
            if category:
                fallback["category"] = category
            resp = self._request("GET", self.reports_path, params=fallback)
            if not resp.ok:
                raise ReportStoreError(self._error_message(resp, "Both location-based and fallback searches failed"))
        reports = _parse_reports(self._json(resp))
        logger.debug(f"[Store] Nearby search returned {len(reports)} reports")
        return reports

    def create(self, report: Report) -> Report:
        body = report.to_dict()
        if not body.get("id"):
            body.pop("id", None)
        resp = self._request("POST", self.reports_path, json=body)
        if not resp.ok:
            raise ReportStoreError(self._error_message(resp, "Failed to create report"))
        created = _unwrap(self._json(resp), "report")
        if not isinstance(created, dict):
            raise ReportStoreError("Unexpected response payload: no 'report' object")
        return Report.from_dict(created)

    def upvote(self, report_id: str) -> None:
        resp = self._request("POST", self.upvote_path.format(id=report_id))
        if not resp.ok:
            raise ReportStoreError(self._error_message(resp, "Failed to upvote report"))


class InMemoryReportStore:
    """Report Store holding reports in a dict, optionally loaded from a file."""

    def __init__(self, reports: Iterable[Report] = ()):
        self._lock = threading.Lock()
        self._reports: Dict[str, Report] = {}
        for r in reports:
            self._reports[r.id or uuid.uuid4().hex] = r

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryReportStore":
        return cls(load_reports(path))

    @property
    def reports(self) -> List[Report]:
        with self._lock:
            return list(self._reports.values())

    def get(self, report_id: str) -> Optional[Report]:
        with self._lock:
            return self._reports.get(report_id)

    def search_nearby(self, lat: float, lng: float, radius_km: float,
                      category: Optional[str] = None, limit: Optional[int] = None) -> List[Report]:
        """Reports within ``radius_km``, nearest first, at most ``limit``."""
        with self._lock:
            candidates = list(self._reports.values())
        scored = []
        for r in candidates:
            if category and r.category != category:
                continue
            if not r.has_valid_coordinates:
                continue
            dist = distance_km(lat, lng, r.lat, r.lng)
            if dist <= radius_km:
                scored.append((dist, r))
        scored.sort(key=lambda pair: pair[0])
        result = [r for _, r in scored]
        return result if limit is None else result[:limit]

    def create(self, report: Report) -> Report:
        created = replace(
            report,
            id=report.id or uuid.uuid4().hex,
            created_at=report.created_at or datetime.now(timezone.utc),
        )
        with self._lock:
            self._reports[created.id] = created
        return created

    def upvote(self, report_id: str) -> None:
        with self._lock:
            existing = self._reports.get(report_id)
            if existing is None:
                raise ReportStoreError(f"Unknown report id: {report_id}")
            self._reports[report_id] = replace(existing, upvote_count=existing.upvote_count + 1)


def load_reports(path: Union[str, Path]) -> List[Report]:
    """Load reports from a JSON or YAML file (a list, or ``{"reports": [...]}``)."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Reports file not found: {path}")
    content = p.read_text(encoding="utf-8")
    if p.suffix in (".yaml", ".yml"):
        import yaml
        try:
            data = yaml.safe_load(content) or []
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    elif p.suffix == ".json":
        data = json.loads(content)
    else:
        raise ValueError(f"Unsupported reports format: {p.suffix}")
    rows = data.get("reports", []) if isinstance(data, dict) else data
    if not isinstance(rows, list):
        raise ValueError(f"Expected a list of reports in {path}")
    return [Report.from_dict(r) for r in rows if isinstance(r, dict)]


def save_reports(path: Union[str, Path], reports: Iterable[Report]) -> None:
    """Write reports back to a JSON or YAML file as ``{"reports": [...]}``."""
    p = Path(path)
    data = {"reports": [r.to_dict() for r in reports]}
    if p.suffix in (".yaml", ".yml"):
        import yaml
        content = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    elif p.suffix == ".json":
        content = json.dumps(data, indent=2, ensure_ascii=False)
    else:
        raise ValueError(f"Unsupported reports format: {p.suffix}")
    p.write_text(content, encoding="utf-8")
    logger.debug(f"[Store] Saved {len(data['reports'])} reports to {p}")
