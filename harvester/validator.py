"""
Two-stage email validation: strict syntax, then domain existence.

The domain stage consults the persistent ``DomainCache`` first and only
falls back to a nameserver lookup on a miss. Successful lookups are
cached; failures are not, so a domain that failed because of a transient
DNS problem is looked up again the next time it appears.
"""

import logging
import re
from typing import Callable, List

import dns.exception
import dns.resolver

from harvester.cache import CacheWriteError, DomainCache

# Initialize logger
log = logging.getLogger(__name__)

_LABEL = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"

# local-part of printable characters, then two or more DNS labels
STRICT_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@" + _LABEL + r"(?:\." + _LABEL + r")+$"
)

# (domain, timeout) -> nameserver host names
NsLookup = Callable[[str, float], List[str]]


def dns_lookup_ns(domain: str, timeout: float) -> List[str]:
    """
    Resolve the NS records of ``domain``.

    Any resolver failure, including a timeout, is reported as "no records".

    Args:
        domain: Domain to look up
        timeout: Overall lifetime of the query in seconds

    Returns:
        Nameserver host names, empty when none could be found
    """
    try:
        answer = dns.resolver.resolve(domain, "NS", lifetime=timeout)
    except dns.exception.Timeout:
        log.debug("NS lookup for %s timed out after %.1fs", domain, timeout)
        return []
    except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers) as e:
        log.debug("NS lookup for %s found nothing: %s", domain, e)
        return []
    except (dns.exception.DNSException, ValueError) as e:
        log.debug("NS lookup for %s failed: %s", domain, e)
        return []
    return [rr.to_text() for rr in answer]


class SyntaxValidator:
    """Checks a candidate against a strict, anchored address grammar."""

    def __init__(self, pattern: re.Pattern = STRICT_EMAIL_RE):
        self.pattern = pattern

    def is_valid(self, email: str) -> bool:
        return bool(email) and self.pattern.fullmatch(email) is not None


class DomainValidator:
    """Accepts an email when its domain is cached or has nameservers."""

    def __init__(self, cache: DomainCache, lookup: NsLookup = dns_lookup_ns,
                 timeout: float = 5.0):
        """
        Args:
            cache: Known-good domains; extended on every successful lookup
            lookup: Nameserver lookup, injectable for tests
            timeout: Upper bound for one lookup in seconds
        """
        self.cache = cache
        self.lookup = lookup
        self.timeout = timeout
        self.lookups = 0
        self.cache_hits = 0

    @staticmethod
    def domain_of(email: str) -> str:
        """Everything after the first ``@``, or an empty string without one."""
        _, at, domain = email.partition("@")
        return domain if at else ""

    def is_valid(self, email: str) -> bool:
        if "@" not in email:
            log.debug("Rejecting %r: no @", email)
            return False

        domain = self.domain_of(email)
        if not domain:
            log.debug("Rejecting %r: empty domain", email)
            return False

        if domain in self.cache:
            self.cache_hits += 1
            return True

        self.lookups += 1
        try:
            nameservers = self.lookup(domain, self.timeout)
        except Exception as e:
            log.warning("Lookup for %s failed, treating as no records: %s", domain, e)
            nameservers = []
        if not nameservers:
            log.debug("Rejecting %r: no nameservers for %s", email, domain)
            return False

        log.info("Domain %s confirmed (%d nameservers)", domain, len(nameservers))
        try:
            self.cache.add(domain)
        except CacheWriteError as e:
            log.error("Could not persist domain %s: %s", domain, e)
        return True
