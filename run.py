#!/usr/bin/env python3
# -*- coding:utf-8 -*-
from playlist_proxy import create_app, enable_debugging, proxy_port

# Create app
app = create_app()
if enable_debugging:
    app.logger.info(' DEBUGGING   = ' + str(enable_debugging))

if __name__ == "__main__":
    # Start Quart server
    app.logger.info("Starting Quart server...")
    app.run(debug=enable_debugging, host='0.0.0.0', port=proxy_port)
    app.logger.info("Quart server completed.")
