#!/usr/bin/env python3
# -*- coding:utf-8 -*-
import logging
import os
from logging.config import dictConfig
from importlib import import_module

from quart import Quart

dictConfig({
    'version':    1,
    'formatters': {
        'default': {
            'format': '%(asctime)s:%(levelname)s:%(name)s: %(message)s',
        }
    },
    'handlers':   {
        'wsgi': {
            'class':     'logging.StreamHandler',
            'stream':    'ext://sys.stderr',
            'formatter': 'default'
        }
    },
    'root':       {
        'level':    'INFO',
        'handlers': ['wsgi']
    },
    'disable_existing_loggers': False,
})


def _env_flag(name, default):
    return os.environ.get(name, default).lower() == 'true'


enable_debugging = _env_flag('ENABLE_DEBUGGING', 'false')

proxy_port = int(os.environ.get('PLAYLIST_PROXY_PORT', 9987))
cache_ttl = int(os.environ.get('PLAYLIST_PROXY_CACHE_TTL', 86400))
cache_backend = os.environ.get('PLAYLIST_PROXY_CACHE_BACKEND', 'memory').lower()
cache_max_entries = int(os.environ.get('PLAYLIST_PROXY_CACHE_MAX_ENTRIES', 500))
max_recursion = int(os.environ.get('PLAYLIST_PROXY_MAX_RECURSION', 5))
filter_discontinuity = _env_flag('PLAYLIST_PROXY_FILTER_DISCONTINUITY', 'true')


def create_app():
    # Create app
    app = Quart(__name__, instance_relative_config=True)
    app.config.update(
        CACHE_TTL=cache_ttl,
        CACHE_BACKEND=cache_backend,
        CACHE_MAX_ENTRIES=cache_max_entries,
        MAX_RECURSION=max_recursion,
        FILTER_DISCONTINUITY=filter_discontinuity,
    )

    # Register the route blueprints
    module = import_module('playlist_proxy.api.routes_proxy')
    app.register_blueprint(module.blueprint)

    log = logging.getLogger('quart.serving')
    app.logger.setLevel(logging.INFO)
    log.setLevel(logging.INFO)
    if enable_debugging:
        app.logger.setLevel(logging.DEBUG)
        log.setLevel(logging.DEBUG)
        for name in ('proxy', 'fetcher', 'cache'):
            logging.getLogger(name).setLevel(logging.DEBUG)

    return app
