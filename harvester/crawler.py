"""
Same-site crawler that feeds page text into the extraction chain.

This is a thin driver around the core: it fetches pages, hands their
visible text to ``EmailExtractor`` and the validators, and collects the
accepted emails keyed by the host they were found on. It never touches
the checkpoint or the input file.
"""

import json
import logging
import os
import threading
import time
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from harvester.cache import DedupeIndex
from harvester.config import config
from harvester.email_extractor import EmailExtractor
from harvester.http import http_client, normalise_domain, validate_url
from harvester.validator import DomainValidator, SyntaxValidator

# Initialize logger
log = logging.getLogger(__name__)

# Never fetched: stylesheets, scripts, images and documents
ASSET_EXTENSIONS = (
    ".css", ".js", ".jpg", ".png", ".gif", ".webp", ".psd", ".bmp",
    ".heif", ".indd", ".svg", ".ai", ".eps", ".pdf",
)


class CrawlerError(Exception):
    """Exception raised for crawler errors."""
    pass


def is_asset_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    _, ext = os.path.splitext(path)
    return ext in ASSET_EXTENSIONS


class Crawler:
    """Breadth-first, multi-threaded crawl of one site collecting emails per host."""

    def __init__(self,
                 start_url: str,
                 extractor: EmailExtractor,
                 syntax: SyntaxValidator,
                 domain_validator: Optional[DomainValidator] = None,
                 allowed_domains: Iterable[str] = (),
                 max_pages: Optional[int] = None,
                 num_workers: Optional[int] = None):
        """
        Args:
            start_url: First page; its host is always allowed
            extractor: Candidate extractor shared with the file pipeline
            syntax: Syntax validator applied to every plain candidate
            domain_validator: Domain check; None collects without DNS validation
            allowed_domains: Extra hosts links may lead to
            max_pages: Upper bound on fetched pages
            num_workers: Concurrent fetch threads
        """
        if not validate_url(start_url):
            raise CrawlerError(f"Invalid start URL: {start_url}")

        self.start_url = start_url
        self.extractor = extractor
        self.syntax = syntax
        self.domain_validator = domain_validator
        self.allowed: Set[str] = {normalise_domain(start_url)}
        self.allowed.update(normalise_domain(d) for d in allowed_domains)
        self.max_pages = max_pages or config.max_pages
        self.num_workers = num_workers or config.crawl_workers

        self.dedupe = DedupeIndex()
        self.results: Dict[str, List[str]] = {}
        self.pages_fetched = 0

        # one lock for the queue, the seen set and the shared stores
        self._lock = threading.Lock()
        self._seen_urls: Set[str] = set()
        self._queue: Deque[str] = deque()
        self._in_flight = 0

    def _is_allowed(self, url: str) -> bool:
        return normalise_domain(urlparse(url).netloc) in self.allowed

    def _enqueue(self, url: str) -> None:
        """Queue ``url`` once; caller holds the lock."""
        url, _ = urldefrag(url)
        if url in self._seen_urls:
            return
        self._seen_urls.add(url)
        if is_asset_url(url):
            log.debug("Ignoring %s", url)
            return
        self._queue.append(url)

    def _next_url(self) -> Optional[str]:
        """
        Pop the next URL, waiting while other workers may still add links.

        Returns:
            A URL, or None once the crawl is finished
        """
        while True:
            with self._lock:
                if self.pages_fetched + self._in_flight >= self.max_pages:
                    if self._in_flight == 0 or not self._queue:
                        return None
                elif self._queue:
                    self._in_flight += 1
                    return self._queue.popleft()
                elif self._in_flight == 0:
                    return None
            time.sleep(0.05)

    def _worker(self) -> None:
        while True:
            url = self._next_url()
            if url is None:
                return
            resp = None
            try:
                log.info("Visiting %s", url)
                resp = http_client.safe_get(url)
                if resp is not None:
                    self._process_page(resp.url, resp.text)
            except Exception as e:
                log.warning("Worker error on %s: %s", url, e)
            finally:
                with self._lock:
                    self._in_flight -= 1
                    if resp is not None:
                        self.pages_fetched += 1

    def _process_page(self, page_url: str, html: str) -> None:
        soup = BeautifulSoup(html, "html.parser")
        self.collect(urlparse(page_url).netloc, soup.get_text(separator=" "))

        links = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if href.lower().startswith("mailto:"):
                continue
            full_url = urljoin(page_url, href)
            if validate_url(full_url) and self._is_allowed(full_url):
                links.append(full_url)

        with self._lock:
            for link in links:
                self._enqueue(link)

    def collect(self, host: str, text: str) -> List[str]:
        """
        Run one block of page text through extraction and validation.

        Plain matches must pass syntax and domain validation; de-obfuscated
        ``[at]``/``[dot]`` matches are kept as found.

        Returns:
            Emails newly added to ``results[host]``
        """
        # validate without the lock; DNS lookups must not stall other workers
        valid: List[str] = []
        checked: Set[str] = set()
        for candidate in self.extractor.find(text):
            if candidate in checked or self.dedupe.seen(candidate):
                continue
            checked.add(candidate)
            if not self.syntax.is_valid(candidate):
                continue
            if self.domain_validator is not None and not self.domain_validator.is_valid(candidate):
                continue
            valid.append(candidate)

        added: List[str] = []
        with self._lock:
            for candidate in valid:
                # another worker may have recorded it meanwhile
                if self.dedupe.seen(candidate):
                    continue
                self.dedupe.record(candidate)
                added.append(candidate)

            for candidate in self.extractor.find_obfuscated(text):
                if self.dedupe.seen(candidate):
                    continue
                self.dedupe.record(candidate)
                added.append(candidate)

            if added:
                self.results.setdefault(host, []).extend(added)
        for email in added:
            log.info("Email: %s (%s)", email, host)
        return added

    def crawl(self) -> Dict[str, List[str]]:
        """
        Crawl from ``start_url`` until no links remain or ``max_pages`` is reached.

        Returns:
            Mapping of host to the emails found there
        """
        start_time = time.time()
        with self._lock:
            self._enqueue(self.start_url)

        log.info("Starting crawl of %s (limit: %d pages, workers: %d)",
                 self.start_url, self.max_pages, self.num_workers)

        threads = []
        for i in range(self.num_workers):
            t = threading.Thread(target=self._worker, name=f"CrawlerThread-{i+1}")
            t.daemon = True
            t.start()
            threads.append(t)
        for t in threads:
            t.join()

        log.info(
            "Crawl of %s completed: %d pages fetched, %d unique URLs seen, %d emails, %.1f seconds",
            self.start_url,
            self.pages_fetched,
            len(self._seen_urls),
            sum(len(v) for v in self.results.values()),
            time.time() - start_time,
        )
        return self.results

    def write_results(self, path: str) -> None:
        """Write the host → emails map as indented JSON."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.results, f, indent=1)
        log.info("Saved crawl results -> %s", path)
