#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import asyncio
import logging
import random
from urllib.parse import urlparse

import aiohttp

from playlist_proxy.errors import FetchError

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Safari/605.1.15",
]
DEFAULT_ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9,en;q=0.8"
ERROR_BODY_LIMIT = 150

fetch_logger = logging.getLogger("fetcher")


class FetchedResource:
    def __init__(self, url, content, content_type="", headers=None, charset=None):
        self.url = url
        self.content = content
        self.content_type = content_type or ""
        self.headers = headers or {}
        self.charset = charset

    @property
    def text(self):
        if isinstance(self.content, str):
            return self.content
        try:
            return self.content.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            # Unknown charset declared by the origin
            return self.content.decode("utf-8", errors="replace")

    def __repr__(self):
        return f"<FetchedResource url={self.url!r} content_type={self.content_type!r} size={len(self.content)}>"


def get_random_user_agent():
    return random.choice(USER_AGENTS)


def origin_of(url):
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def build_request_headers(target_url, accept_language=None):
    return {
        "User-Agent":      get_random_user_agent(),
        "Accept":          "*/*",
        "Accept-Language": accept_language or DEFAULT_ACCEPT_LANGUAGE,
        "Referer":         origin_of(target_url),
    }


async def fetch_resource(target_url, accept_language=None):
    """
    GET a remote resource, following redirects.

    Raises FetchError for a non-2xx status or any transport failure. No retry
    is attempted.
    """
    headers = build_request_headers(target_url, accept_language=accept_language)
    fetch_logger.debug("Fetching '%s'", target_url)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(target_url, headers=headers, allow_redirects=True) as resp:
                if not 200 <= resp.status < 300:
                    error_body = await _read_error_body(resp)
                    fetch_logger.debug("Request failed: %s %s - %s", resp.status, resp.reason, target_url)
                    raise FetchError(
                        target_url,
                        f"HTTP error {resp.status}: {resp.reason}. URL: {target_url}. Body: {error_body}",
                        status=resp.status,
                        reason=resp.reason,
                        body=error_body,
                    )
                content = await resp.read()
                resource = FetchedResource(
                    str(resp.url),
                    content,
                    content_type=resp.headers.get("Content-Type", ""),
                    headers={k.lower(): v for k, v in resp.headers.items()},
                    charset=resp.charset,
                )
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        fetch_logger.debug("Request to '%s' failed: %s", target_url, exc)
        raise FetchError(target_url, f"Failed to fetch target URL {target_url}: {exc}") from exc

    fetch_logger.debug(
        "Fetched '%s', Content-Type: %s, length: %s", target_url, resource.content_type, len(resource.content)
    )
    return resource


async def _read_error_body(resp):
    try:
        body = await resp.text(errors="replace")
    except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError, LookupError):
        return ""
    return body[:ERROR_BODY_LIMIT]
