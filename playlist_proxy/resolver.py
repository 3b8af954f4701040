#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import re
from collections import namedtuple

from playlist_proxy.cache import PROCESSED_TIER, RAW_TIER, ProxyCache
from playlist_proxy.errors import MalformedProxyPath, ProcessingError, ProxyError, RecursionLimitError
from playlist_proxy.fetcher import FetchedResource, fetch_resource
from playlist_proxy.playlist import is_master, is_media_file, is_playlist, rewrite_media_playlist
from playlist_proxy.urls import base_of, decode_proxy_path, resolve_url

MAX_RECURSION = 5
CACHE_TTL = 86400
PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"

# Origin headers that describe the upstream transfer rather than the content
EXCLUDED_PASSTHROUGH_HEADERS = ("content-encoding", "content-length", "transfer-encoding", "connection")

_BANDWIDTH_RE = re.compile(r"(?<![-A-Z])BANDWIDTH=(\d+)")

Variant = namedtuple("Variant", ["bandwidth", "uri"])

proxy_logger = logging.getLogger("proxy")


def parse_variants(body):
    variants = []
    lines = body.split("\n")
    index = 0
    while index < len(lines):
        line = lines[index].strip()
        if line.startswith("#EXT-X-STREAM-INF"):
            match = _BANDWIDTH_RE.search(line)
            bandwidth = int(match.group(1)) if match else 0
            for next_index in range(index + 1, len(lines)):
                candidate = lines[next_index].strip()
                if candidate and not candidate.startswith("#"):
                    variants.append(Variant(bandwidth, candidate))
                    index = next_index
                    break
        index += 1
    return variants


def _looks_like_sub_playlist(line):
    lowered = line.lower()
    return lowered.endswith(".m3u8") or ".m3u8?" in lowered


def select_variant(url, body):
    """
    Pick the highest bandwidth variant of a master playlist and return its
    absolute URL. Later variants win ties. Returns None if nothing usable is
    declared.
    """
    base_url = base_of(url)
    best = None
    for variant in parse_variants(body):
        if best is None or variant.bandwidth >= best.bandwidth:
            best = variant
    if best is not None:
        proxy_logger.debug("Selected variant (bandwidth: %s): %s", best.bandwidth, best.uri)
        return resolve_url(base_url, best.uri)

    proxy_logger.debug("No STREAM-INF variants in '%s', looking for a sub-playlist reference", url)
    for raw_line in body.split("\n"):
        line = raw_line.strip()
        if line and not line.startswith("#") and _looks_like_sub_playlist(line):
            return resolve_url(base_url, line)
    return None


class PlaylistResolver:
    """
    Resolves a playlist into rewritten media playlist content, following the
    best variant of master playlists. One instance serves one inbound request.
    """

    def __init__(self, cache=None, fetch=None, accept_language=None, filter_discontinuity=True,
                 max_recursion=MAX_RECURSION, ttl=None):
        self.cache = cache if cache is not None else ProxyCache()
        self.fetch = fetch or fetch_resource
        self.accept_language = accept_language
        self.filter_discontinuity = filter_discontinuity
        self.max_recursion = max_recursion
        self.ttl = ttl

    async def process(self, url, body, depth=0):
        """
        Returns the rewritten playlist text, or a FetchedResource when a
        master playlist turns out to point straight at a media asset.
        """
        if is_master(body):
            proxy_logger.debug("Master playlist detected: %s", url)
            return await self.resolve_master(url, body, depth)
        proxy_logger.debug("Media playlist detected: %s", url)
        return rewrite_media_playlist(url, body, filter_discontinuity=self.filter_discontinuity)

    async def resolve_master(self, url, body, depth):
        if depth > self.max_recursion:
            raise RecursionLimitError(url, self.max_recursion)

        variant_url = select_variant(url, body)
        if not variant_url:
            proxy_logger.debug("No usable variant in master playlist '%s', rewriting it as a media playlist", url)
            return rewrite_media_playlist(url, body, filter_discontinuity=self.filter_discontinuity)

        if self.cache.enabled:
            cached = await self.cache.get(PROCESSED_TIER, variant_url)
            if cached is not None:
                return cached

        variant = await self.fetch(variant_url, accept_language=self.accept_language)
        variant_body = variant.text
        if not is_playlist(variant_body, variant.content_type):
            proxy_logger.debug(
                "Variant '%s' is not a playlist (type: %s), returning it as is", variant_url, variant.content_type
            )
            return variant

        processed = await self.process(variant_url, variant_body, depth + 1)
        if isinstance(processed, str):
            self.cache.put_later(PROCESSED_TIER, variant_url, processed, ttl=self.ttl)
        return processed


def playlist_headers(ttl=CACHE_TTL):
    return {
        "Content-Type":  PLAYLIST_CONTENT_TYPE,
        "Cache-Control": f"public, max-age={ttl}",
    }


def passthrough_headers(origin_headers, cache_control=None):
    headers = {
        k: v for k, v in origin_headers.items() if k.lower() not in EXCLUDED_PASSTHROUGH_HEADERS
    }
    if cache_control:
        headers["cache-control"] = cache_control
    return headers


def _variant_response(resource):
    return resource.content, 200, {"Content-Type": resource.content_type or "application/octet-stream"}


async def _playlist_response(resolver, target_url, body, ttl):
    processed = await resolver.process(target_url, body)
    if isinstance(processed, FetchedResource):
        return _variant_response(processed)
    return processed, 200, playlist_headers(ttl)


def _raw_cache_entry(resource):
    if is_playlist(resource.text, resource.content_type):
        return {"body": resource.text, "headers": resource.headers}
    if is_media_file(resource.url, resource.content_type):
        return None
    try:
        body = resource.content.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return {"body": body, "headers": resource.headers}


async def handle_proxy_request(path, cache=None, accept_language=None, filter_discontinuity=True,
                               max_recursion=MAX_RECURSION, ttl=CACHE_TTL, fetch=None):
    """
    Standard logic for a '/proxy/<encoded URL>' request.
    Returns a (body, status, headers) tuple.
    """
    target_url = decode_proxy_path(path)
    if not target_url:
        raise MalformedProxyPath(path)

    cache = cache if cache is not None else ProxyCache(ttl=ttl)
    resolver = PlaylistResolver(
        cache=cache,
        fetch=fetch,
        accept_language=accept_language,
        filter_discontinuity=filter_discontinuity,
        max_recursion=max_recursion,
        ttl=ttl,
    )
    proxy_logger.debug("Proxy request for '%s'", target_url)

    try:
        if cache.enabled:
            cached = await cache.get(RAW_TIER, target_url)
            if cached is not None:
                body = cached["body"]
                content_type = cached["headers"].get("content-type", "")
                # Rewritten links must always match the current proxy path
                # encoding, so cached playlists are re-processed every time
                if is_playlist(body, content_type):
                    proxy_logger.debug("Cached content is a playlist, re-processing: %s", target_url)
                    return await _playlist_response(resolver, target_url, body, ttl)
                proxy_logger.debug("Serving cached non-playlist content: %s", target_url)
                return body, 200, passthrough_headers(cached["headers"])

        resource = await resolver.fetch(target_url, accept_language=accept_language)

        if cache.enabled:
            entry = _raw_cache_entry(resource)
            if entry is not None:
                cache.put_later(RAW_TIER, target_url, entry, ttl=ttl)

        body = resource.text
        if is_playlist(body, resource.content_type):
            proxy_logger.debug("Content is a playlist, processing: %s", target_url)
            return await _playlist_response(resolver, target_url, body, ttl)

        proxy_logger.debug("Content is not a playlist (type: %s), passing through: %s",
                           resource.content_type, target_url)
        return resource.content, 200, passthrough_headers(resource.headers, f"public, max-age={ttl}")
    except ProxyError:
        raise
    except Exception as exc:
        raise ProcessingError(f"Failed to process '{target_url}': {exc}") from exc
