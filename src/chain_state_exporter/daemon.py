import logging
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from . import __version__
from .config import ExporterConfig

log = logging.getLogger("chain-state-exporter")

LANDING_PAGE = """<html>
<head><title>Chain State Exporter</title></head>
<body>
<h1>Chain State Exporter {version}</h1>
<p><a href='{metrics_path}'>Metrics</a></p>
</body>
</html>
"""


class ExporterDaemon:
    """Serves the registry over HTTP; each metrics request runs one scrape."""

    def __init__(self, config: ExporterConfig, registry: CollectorRegistry):
        self.config = config
        self.registry = registry
        self.httpd: Optional[HTTPServer] = None

    def render_metrics(self) -> bytes:
        return generate_latest(self.registry)

    def start(self):
        """Bind the HTTP server and serve until interrupted."""
        addr = self.config.address
        # Plain HTTPServer handles one request at a time, so scrapes never overlap.
        httpd = HTTPServer(addr, self._make_handler())
        self.httpd = httpd

        log.info(f"Server is ready to handle incoming scrape requests on {addr[0] or '*'}:{addr[1]}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            log.info("Shutting down...")
        finally:
            self.stop()

    def stop(self):
        if self.httpd:
            self.httpd.server_close()
            self.httpd = None

    def _make_handler(self):
        """Create a request handler with access to this daemon instance."""
        daemon = self

        class RequestHandler(BaseHTTPRequestHandler):
            def do_GET(self):
                path = self.path.split('?', 1)[0]
                if path == daemon.config.metrics_path:
                    self._handle_metrics()
                elif path == '/':
                    self._handle_index()
                elif path == '/healthz':
                    self._handle_healthz()
                else:
                    self._handle_not_found()

            def _set_headers(self, status_code=200, content_type="text/plain; charset=utf-8"):
                self.send_response(status_code)
                self.send_header("Content-Type", content_type)
                self.send_header("Cache-Control", "no-store")
                self.end_headers()

            def _handle_metrics(self):
                data = daemon.render_metrics()
                self._set_headers(content_type=CONTENT_TYPE_LATEST)
                self.wfile.write(data)

            def _handle_index(self):
                page = LANDING_PAGE.format(version=__version__, metrics_path=daemon.config.metrics_path)
                self._set_headers(content_type="text/html; charset=utf-8")
                self.wfile.write(page.encode('utf-8'))

            def _handle_healthz(self):
                self._set_headers()
                self.wfile.write(b"ok\n")

            def _handle_not_found(self):
                self._set_headers(404)
                self.wfile.write(b"Not found\n")

            def log_message(self, fmt, *args):
                log.debug(f"{self.address_string()} - {fmt % args}")

        return RequestHandler
