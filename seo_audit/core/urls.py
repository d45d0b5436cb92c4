"""
URL utilities shared by the crawler, the analyzer and audit submission.

Every helper is total: malformed input is common on real-world sites, so
failures come back as sentinel values ("", False, or the input unchanged)
rather than exceptions.
"""

from __future__ import annotations

import ipaddress
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from pydantic import BaseModel

HTTP_SCHEMES = ("http", "https")


class URLValidation(BaseModel):
    valid: bool
    error: str | None = None


class URLNormalizer:
    """Normalizes, validates and classifies URLs."""

    TRACKING_PARAMS = {"fbclid", "gclid"}
    TRACKING_PREFIX = "utm_"
    IGNORED_EXTENSIONS = (
        ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico",
        ".mp4", ".webm", ".avi", ".mov", ".wmv",
        ".mp3", ".wav", ".ogg",
        ".zip", ".rar", ".tar", ".gz",
        ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
        ".css", ".js", ".json", ".xml", ".txt",
    )

    @classmethod
    def normalize(cls, raw: str) -> str:
        """Add https:// when no scheme is given and drop one trailing slash."""
        normalized = raw.strip()
        if not normalized.startswith(("http://", "https://")):
            normalized = "https://" + normalized
        if normalized.endswith("/"):
            normalized = normalized[:-1]
        return normalized

    @classmethod
    def validate(cls, url: str) -> URLValidation:
        """Check that a submitted URL is a public http(s) site."""
        try:
            parsed = urlsplit(url)
            hostname = parsed.hostname
            parsed.port  # Raises on a malformed port
        except ValueError:
            return URLValidation(valid=False, error="Invalid URL format")

        if not parsed.scheme:
            return URLValidation(valid=False, error="Invalid URL format")
        if parsed.scheme not in HTTP_SCHEMES:
            return URLValidation(valid=False, error="Invalid protocol. Use http:// or https://")
        if not hostname:
            return URLValidation(valid=False, error="Invalid URL format")

        if hostname == "localhost" or hostname.endswith(".local") or cls._is_private_address(hostname):
            return URLValidation(valid=False, error="Cannot audit localhost or private IP addresses")

        if "." not in hostname:
            return URLValidation(valid=False, error="Invalid domain name")

        return URLValidation(valid=True)

    @classmethod
    def sanitize_for_crawl(cls, url: str) -> str:
        """
        Collapse URL variants that point at the same page.
        Lower-cases scheme and host, drops the fragment and tracking params.
        """
        try:
            parsed = urlsplit(url)
        except ValueError:
            return url

        if not parsed.scheme or not parsed.netloc:
            return url

        query = parsed.query
        if query:
            params = parse_qsl(query, keep_blank_values=True)
            kept = [(k, v) for k, v in params if not cls.is_tracking_param(k)]
            if len(kept) != len(params):
                query = urlencode(kept)

        return urlunsplit((
            parsed.scheme.lower(),
            parsed.netloc.lower(),
            parsed.path or "/",
            query,
            "",  # No fragment
        ))

    @classmethod
    def is_tracking_param(cls, name: str) -> bool:
        return name.startswith(cls.TRACKING_PREFIX) or name in cls.TRACKING_PARAMS

    @classmethod
    def should_crawl(cls, url: str) -> bool:
        """False for non-http(s) URLs and for links to files that are not pages."""
        try:
            parsed = urlsplit(url)
        except ValueError:
            return False

        if parsed.scheme not in HTTP_SCHEMES:
            return False

        return not parsed.path.lower().endswith(cls.IGNORED_EXTENSIONS)

    @classmethod
    def is_internal(cls, base_url: str, link: str) -> bool:
        """Same hostname as base_url once link is resolved against it."""
        try:
            base_host = urlsplit(base_url).hostname
            link_host = urlsplit(urljoin(base_url, link)).hostname
        except ValueError:
            return False
        return bool(base_host) and base_host == link_host

    @classmethod
    def resolve(cls, base: str, relative: str) -> str:
        """Resolve relative against base. Returns "" when no absolute URL results."""
        try:
            absolute = urljoin(base, relative.strip())
            parsed = urlsplit(absolute)
        except ValueError:
            return ""

        if not parsed.scheme:
            return ""
        if parsed.scheme in HTTP_SCHEMES and not parsed.netloc:
            return ""
        return absolute

    @classmethod
    def base_domain(cls, url: str) -> str:
        try:
            return urlsplit(url).hostname or ""
        except ValueError:
            return ""

    @staticmethod
    def _is_private_address(hostname: str) -> bool:
        try:
            address = ipaddress.ip_address(hostname)
        except ValueError:
            return False
        return address.is_private or address.is_loopback or address.is_link_local or address.is_unspecified
