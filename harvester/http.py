"""
HTTP client used by the crawler driver.

One requests.Session per thread with urllib3 retries for transient
statuses. ``safe_get`` never raises for network problems; it returns
None and records the outcome in ``stats``.
"""

from __future__ import annotations

import logging
import re
import threading
from collections import Counter
from threading import local
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from harvester.config import config

log = logging.getLogger(__name__)

logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)

_thread_local = local()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def validate_url(url: str) -> bool:
    if not url or len(url) > config.max_url_length:
        return False
    try:
        p = urlparse(url)
        if p.scheme not in {"http", "https"} or not p.netloc:
            return False
        if re.search(r"^(file|data|javascript):", url, re.I):
            return False
        return True
    except ValueError:
        return False


def normalise_domain(url: str) -> str:
    """
    Normalize a domain by removing www prefix and converting to lowercase.
    """
    host = urlparse(url).netloc if url.startswith(("http://", "https://")) else url
    return host.lower().removeprefix("www.")


# ---------------------------------------------------------------------------
# Thread-local session manager
# ---------------------------------------------------------------------------

class _SessionManager:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._adapter: Optional[HTTPAdapter] = None

    def _build_adapter(self) -> HTTPAdapter:
        retry = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "HEAD"),
        )
        return HTTPAdapter(max_retries=retry)

    def session(self) -> requests.Session:
        sess = getattr(_thread_local, "session", None)
        if sess is None:
            with self._lock:
                if self._adapter is None:
                    self._adapter = self._build_adapter()
                adapter = self._adapter
            sess = requests.Session()
            sess.headers.update({"User-Agent": config.user_agent})
            sess.mount("http://", adapter)
            sess.mount("https://", adapter)
            _thread_local.session = sess
        return sess


_session_mgr = _SessionManager()


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class HttpClient:

    def __init__(self) -> None:
        self.stats = Counter()
        self._stats_lock = threading.Lock()

    def _count(self, key: str) -> None:
        with self._stats_lock:
            self.stats[key] += 1

    def safe_get(
        self,
        url: str,
        timeout: Optional[tuple[float, float]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[requests.Response]:
        if not validate_url(url):
            log.warning("Skipping invalid URL: %s", url)
            self._count("skipped_urls")
            return None

        if timeout is None:
            timeout = config.request_timeout

        self._count("total_requests")
        try:
            response = _session_mgr.session().get(
                url,
                allow_redirects=True,
                timeout=timeout,
                headers=headers,
            )
        except requests.RequestException as err:
            log.debug("Request failed for %s: %s", url, err)
            self._count("status_no-response")
            return None

        status = response.status_code
        log.info("HTTP GET %s → %s", url, status)
        self._count(f"status_{status}")

        if not response.ok:
            return None
        return response


# single, shared instance
http_client = HttpClient()
