#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import re
from urllib.parse import quote, unquote, urljoin, urlparse

PROXY_PREFIX = "/proxy/"

# Characters left untouched by JavaScript's encodeURIComponent
_ENCODE_SAFE = "!~*'()"
_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

proxy_logger = logging.getLogger("proxy")


def is_absolute_url(value):
    return bool(value) and bool(_ABSOLUTE_URL_RE.match(value))


def encode_proxy_path(target_url):
    return f"{PROXY_PREFIX}{quote(target_url, safe=_ENCODE_SAFE)}"


def decode_proxy_path(path):
    """
    Recover the target URL from a '/proxy/<encoded URL>' path.
    Returns None when nothing usable can be recovered.
    """
    encoded_url = re.sub(r"^/proxy/", "", path or "")
    if not encoded_url:
        return None

    decoded_url = unquote(encoded_url)
    if is_absolute_url(decoded_url) and urlparse(decoded_url).netloc:
        return decoded_url

    # Some clients send the target without encoding it first
    if is_absolute_url(encoded_url):
        proxy_logger.debug("Proxy path was not encoded but looks like a URL: %s", encoded_url)
        return encoded_url

    proxy_logger.debug("Invalid target URL in proxy path: %s", decoded_url)
    return None


def base_of(url):
    try:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"not an absolute URL: {url}")
        directory = parsed.path.rsplit("/", 1)[0] if parsed.path else ""
        return f"{parsed.scheme}://{parsed.netloc}{directory}/"
    except ValueError:
        last_slash = url.rfind("/")
        if last_slash > url.find("://") + 2:
            return url[:last_slash + 1]
        return url + "/"


def resolve_url(base_url, ref):
    if is_absolute_url(ref):
        return ref
    try:
        return urljoin(base_url, ref)
    except ValueError as exc:
        proxy_logger.debug("Failed to resolve '%s' against '%s': %s", ref, base_url, exc)
        if ref.startswith("/"):
            parsed = urlparse(base_url)
            return f"{parsed.scheme}://{parsed.netloc}{ref}"
        return f"{base_url}{ref}"
