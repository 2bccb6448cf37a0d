"""
Liveness endpoint for the scheduler worker.
Serves GET /health on PORT so platform healthchecks succeed while batches run.
No-op when PORT is not set (e.g. local dev).
"""
from __future__ import annotations

import json
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


def start_health_server(
    service_name: str,
    status_provider: Optional[Callable[[], dict[str, object]]] = None,
) -> Optional[threading.Thread]:
    """
    Start a daemon thread that answers GET /health.

    status_provider, when given, is merged into the response body (e.g. which
    jobs are running and when they fire next).
    """
    port_str = os.environ.get("PORT")
    if not port_str:
        return None
    try:
        port = int(port_str)
    except ValueError:
        logger.warning("health_server_bad_port", port=port_str)
        return None

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if self.path.rstrip("/") != "/health":
                self.send_response(404)
                self.end_headers()
                return
            payload: dict[str, object] = {"status": "ok", "service": service_name}
            if status_provider is not None:
                payload.update(status_provider())
            body = json.dumps(payload, default=str).encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:
            pass

    def serve() -> None:
        with HTTPServer(("0.0.0.0", port), Handler) as httpd:
            httpd.serve_forever()

    t = threading.Thread(target=serve, name="health-server", daemon=True)
    t.start()
    logger.info("health_server_started", port=port)
    return t
