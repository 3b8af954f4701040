#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import re

from playlist_proxy.urls import base_of, encode_proxy_path, resolve_url

PLAYLIST_CONTENT_TYPES = (
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "audio/mpegurl",
)
PLAYLIST_MAGIC = "#EXTM3U"
MASTER_MARKERS = ("#EXT-X-STREAM-INF", "#EXT-X-MEDIA:")

MEDIA_FILE_EXTENSIONS = (
    ".mp4", ".webm", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".f4v", ".m4v", ".3gp", ".3g2", ".ts", ".mts", ".m2ts",
    ".mp3", ".wav", ".ogg", ".aac", ".m4a", ".flac", ".wma", ".alac", ".aiff", ".opus",
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".tiff", ".svg", ".avif", ".heic",
)
MEDIA_CONTENT_TYPES = ("video/", "audio/", "image/")

MASTER = "master"
MEDIA = "media"

_URI_ATTRIBUTE_RE = re.compile(r'URI="([^"]+)"')

proxy_logger = logging.getLogger("proxy")


def is_playlist(body, content_type):
    if content_type:
        lowered = content_type.lower()
        if any(t in lowered for t in PLAYLIST_CONTENT_TYPES):
            return True
    return isinstance(body, str) and body.lstrip().startswith(PLAYLIST_MAGIC)


def is_master(body):
    return any(marker in body for marker in MASTER_MARKERS)


def classify(body, content_type):
    if not is_playlist(body, content_type):
        return None
    return MASTER if is_master(body) else MEDIA


def is_media_file(url, content_type):
    if content_type and content_type.lower().startswith(MEDIA_CONTENT_TYPES):
        return True
    url_lower = url.lower()
    for ext in MEDIA_FILE_EXTENSIONS:
        if url_lower.endswith(ext) or f"{ext}?" in url_lower:
            return True
    return False


def _rewrite_uri_attribute(line, base_url):
    def replace_uri(match):
        absolute_uri = resolve_url(base_url, match.group(1))
        proxy_logger.debug("Rewriting URI attribute '%s' -> '%s'", match.group(1), absolute_uri)
        return f'URI="{encode_proxy_path(absolute_uri)}"'

    return _URI_ATTRIBUTE_RE.sub(replace_uri, line, count=1)


def rewrite_media_playlist(url, body, filter_discontinuity=True):
    """
    Rewrite a media (leaf) playlist so that every segment, key and
    initialization segment is requested through the proxy.
    """
    base_url = base_of(url)
    lines = body.split("\n")
    last_index = len(lines) - 1
    output = []

    for index, raw_line in enumerate(lines):
        line = raw_line.strip()
        if not line:
            if index == last_index:
                output.append(line)
            continue

        if filter_discontinuity and line == "#EXT-X-DISCONTINUITY":
            proxy_logger.debug("Dropping discontinuity marker in '%s'", url)
            continue

        if line.startswith("#EXT-X-KEY") or line.startswith("#EXT-X-MAP"):
            output.append(_rewrite_uri_attribute(line, base_url))
        elif line.startswith("#"):
            # #EXTINF, #EXTM3U, #EXT-X-VERSION and friends
            output.append(line)
        else:
            absolute_url = resolve_url(base_url, line)
            output.append(encode_proxy_path(absolute_url))

    return "\n".join(output)
