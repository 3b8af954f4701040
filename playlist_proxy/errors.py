#!/usr/bin/env python3
# -*- coding:utf-8 -*-


class ProxyError(Exception):
    """Base class for every failure the proxy pipeline reports to a client."""
    status_code = 500


class MalformedProxyPath(ProxyError):
    status_code = 400

    def __init__(self, path):
        super().__init__(f"Invalid proxy request. Path must be /proxy/<encoded URL>, got '{path}'")
        self.path = path


class FetchError(ProxyError):
    def __init__(self, url, message, status=None, reason=None, body=None):
        super().__init__(message)
        self.url = url
        self.status = status
        self.reason = reason
        self.body = body


class RecursionLimitError(ProxyError):
    def __init__(self, url, limit):
        super().__init__(f"Too many nested playlists (limit {limit}) while resolving '{url}'")
        self.url = url
        self.limit = limit


class ProcessingError(ProxyError):
    pass
