# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared WSGI plumbing for the JSON HTTP servers.

The relay, the chat simulator and both webhook receivers are small
werkzeug applications served from a background thread.  ``JsonServer``
holds the URL map, dispatch and thread lifecycle; subclasses declare
their rules and endpoint handlers.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from werkzeug.wrappers.response import StartResponse

from werkzeug.exceptions import HTTPException
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response


logger = logging.getLogger(__name__)

type EndpointHandler = Callable[..., Response]


def json_response(data: Any, status: int = 200) -> Response:
    """Serialize ``data`` as a JSON response."""
    return Response(
        json.dumps(data),
        status=status,
        content_type="application/json",
    )


def json_error(message: str, status: int) -> Response:
    """JSON error body ``{"error": message}``."""
    return json_response({"error": message}, status=status)


def read_json_object(request: Request) -> dict[str, Any] | None:
    """Parse the request body as a JSON object.

    Returns:
        The decoded object, or None if the body is not a JSON object.
    """
    try:
        data = json.loads(request.get_data(as_text=True) or "null")
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JsonServer:
    """WSGI server running in a background thread.

    Attributes:
        host: Bind address.
        port: Listen port (updated to the bound port after ``start``).
    """

    #: Thread name used for the serving thread.
    thread_name = "JsonServer"

    def __init__(
        self,
        rules: list[Rule],
        endpoints: dict[str, EndpointHandler],
        host: str = "127.0.0.1",
        port: int = 0,
    ) -> None:
        self.host = host
        self.port = port
        self._url_map = Map(rules)
        self._endpoint_handlers = endpoints
        self._server: Any = None
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        """Whether the serving thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start serving in a background thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._server = make_server(
            self.host,
            self.port,
            self._wsgi_app,
            threaded=True,
        )
        self.port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            daemon=True,
            name=self.thread_name,
        )
        self._thread.start()
        logger.info(
            "%s started at http://%s:%d/",
            self.thread_name,
            self.host,
            self.port,
        )

    def stop(self) -> None:
        """Stop the server.  Idempotent."""
        server = self._server
        if server is None:
            return
        self._server = None
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("%s stopped", self.thread_name)

    def _wsgi_app(
        self,
        environ: dict[str, Any],
        start_response: "StartResponse",
    ) -> Iterable[bytes]:
        """WSGI application entry point."""
        request = Request(environ)
        response = self._dispatch(request)
        return response(environ, start_response)

    def _dispatch(self, request: Request) -> Response:
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            handler = self._endpoint_handlers[endpoint]
            return handler(request, **values)
        except HTTPException as e:
            return json_error(e.name, e.code or 500)
        except Exception:
            logger.exception("Error handling request %s", request.path)
            return json_error("Internal Server Error", 500)
