#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import asyncio
import logging

from quart import Response, current_app, request

from playlist_proxy.api import blueprint
from playlist_proxy.cache import MemoryKeyValueStore, NullKeyValueStore, ProxyCache
from playlist_proxy.errors import ProxyError
from playlist_proxy.resolver import handle_proxy_request
from playlist_proxy.urls import PROXY_PREFIX

CORS_HEADERS = {
    "Access-Control-Allow-Origin":  "*",
    "Access-Control-Allow-Methods": "GET, HEAD, POST, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}
CORS_MAX_AGE = 86400
CACHE_CLEANUP_INTERVAL = 60

proxy_logger = logging.getLogger("proxy")


def build_cache(config):
    ttl = config.get("CACHE_TTL", 86400)
    if config.get("CACHE_BACKEND", "memory") == "memory":
        store = MemoryKeyValueStore(ttl=ttl, max_size=config.get("CACHE_MAX_ENTRIES", 500))
    else:
        store = NullKeyValueStore()
    return ProxyCache(store=store, ttl=ttl)


def get_cache():
    return current_app.extensions["proxy_cache"]


async def periodic_cache_cleanup(store):
    while True:
        try:
            evicted_count = await store.evict_expired_items()
            if evicted_count > 0:
                proxy_logger.info("Cache cleanup: evicted %s expired items", evicted_count)
        except Exception as e:
            proxy_logger.error("Error during cache cleanup: %s", e)
        await asyncio.sleep(CACHE_CLEANUP_INTERVAL)


@blueprint.record_once
def _register_startup(state):
    app = state.app
    app.extensions["proxy_cache"] = build_cache(app.config)

    @app.before_serving
    async def _start_periodic_cache_cleanup():
        store = app.extensions["proxy_cache"].store
        if isinstance(store, MemoryKeyValueStore):
            app.extensions["proxy_cache_cleanup"] = asyncio.create_task(periodic_cache_cleanup(store))

    @app.after_serving
    async def _stop_periodic_cache_cleanup():
        task = app.extensions.pop("proxy_cache_cleanup", None)
        if task:
            task.cancel()
        await app.extensions["proxy_cache"].drain()


def _request_proxy_path():
    # Read the undecoded path so that an encoded target URL survives routing
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.path
    prefix_index = path.find(PROXY_PREFIX)
    return path[prefix_index:] if prefix_index >= 0 else path


def create_response(body, status=200, headers=None):
    cors_names = {name.lower() for name in CORS_HEADERS}
    response_headers = {k: v for k, v in (headers or {}).items() if k.lower() not in cors_names}
    response_headers.update(CORS_HEADERS)
    return Response(body, status=status, headers=response_headers)


def preflight_response():
    headers = dict(CORS_HEADERS)
    headers["Access-Control-Max-Age"] = str(CORS_MAX_AGE)
    return Response("", status=204, headers=headers)


# Decoded target URLs contain "//", which must not be merged into one slash
@blueprint.route("/proxy/<path:encoded_url>", methods=["GET", "HEAD", "POST", "OPTIONS"], merge_slashes=False)
async def proxy(encoded_url):
    if request.method == "OPTIONS":
        return preflight_response()

    path = _request_proxy_path()
    config = current_app.config
    try:
        body, status, headers = await handle_proxy_request(
            path,
            cache=get_cache(),
            accept_language=request.headers.get("Accept-Language"),
            filter_discontinuity=config.get("FILTER_DISCONTINUITY", True),
            max_recursion=config.get("MAX_RECURSION", 5),
            ttl=config.get("CACHE_TTL", 86400),
        )
    except ProxyError as exc:
        if exc.status_code == 400:
            proxy_logger.warning("Invalid proxy request path: %s", path)
            return create_response(str(exc), status=400)
        proxy_logger.error("Proxy request '%s' failed: %s", path, exc)
        return create_response(f"Proxy processing error: {exc}", status=exc.status_code)

    return create_response(body, status=status, headers=headers)
