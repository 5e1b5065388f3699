"""Plain HTTP responses served on the relay port.

``websockets`` hands every incoming request to ``process_request`` before
the upgrade handshake. Requests that are not WebSocket upgrades are answered
here: a liveness check and the static client bundle.
"""

import asyncio
import mimetypes
from http import HTTPStatus
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import unquote, urlsplit

from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from roomrelay.utils.config import HttpSection
from roomrelay.utils.logger import get_logger

logger = get_logger(__name__)


def make_response(status: HTTPStatus, body: bytes = b"", content_type: str = "text/plain; charset=utf-8") -> Response:
    """Build a complete HTTP response."""
    headers = Headers()
    headers["Content-Type"] = content_type
    headers["Content-Length"] = str(len(body))
    headers["Connection"] = "close"
    return Response(status.value, status.phrase, headers, body)


class HttpResponder:
    """Answer non-WebSocket requests."""

    def __init__(self, config: Optional[HttpSection] = None):
        """Initialize responder.

        Args:
            config: HTTP section of the relay configuration
        """
        self.config = config or HttpSection()
        self.static_dir = Path(self.config.static_dir).resolve()

        if not self.static_dir.is_dir():
            logger.warning(f"Static directory not found: {self.static_dir}")

    async def process_request(self, connection: Any, request: Request) -> Optional[Response]:
        """Hook for ``websockets.serve(process_request=...)``.

        Returns:
            None to continue with the WebSocket handshake, or a response
        """
        path = urlsplit(request.path).path

        if request.headers.get("Upgrade", "").lower() == "websocket":
            if path == self.config.websocket_path:
                return None
            logger.debug(f"Rejected upgrade on {path}")
            return make_response(HTTPStatus.NOT_FOUND, b"Not Found\n")

        if path == self.config.health_path:
            return make_response(HTTPStatus.OK, self.config.health_body.encode())

        return await self.serve_static(path)

    async def serve_static(self, path: str) -> Response:
        """Serve one file from the static directory.

        Disk access runs in a worker thread, off the relay event loop.
        """
        file_path, body = await asyncio.to_thread(self.load, path)
        if file_path is None:
            logger.debug(f"Static file not found: {path}")
            return make_response(HTTPStatus.NOT_FOUND, b"Not Found\n")

        content_type, _ = mimetypes.guess_type(file_path.name)
        logger.debug(f"Serving {file_path} ({len(body)} bytes)")
        return make_response(HTTPStatus.OK, body, content_type or "application/octet-stream")

    def load(self, path: str) -> Tuple[Optional[Path], bytes]:
        """Resolve and read a static file. Blocking."""
        file_path = self.resolve(path)
        if file_path is None:
            return None, b""
        return file_path, file_path.read_bytes()

    def resolve(self, path: str) -> Optional[Path]:
        """Map a request path to a file inside the static directory.

        Returns:
            File path, or None if missing or outside the directory
        """
        relative = unquote(path).lstrip("/")
        candidate = (self.static_dir / relative).resolve()

        if candidate != self.static_dir and self.static_dir not in candidate.parents:
            return None

        if candidate.is_dir():
            candidate = candidate / self.config.index_file

        return candidate if candidate.is_file() else None
