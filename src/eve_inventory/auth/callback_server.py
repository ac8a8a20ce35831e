"""
OAuth Callback Listener for EVE Inventory.

Starts a minimal loopback HTTP server that captures the SSO redirect for one
authorization attempt, shows a confirmation page and hands the raw redirect
URL back to the waiting flow.
"""

import asyncio
import html
import logging
import socket
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from ..utils.constants import (
    CALLBACK_PATH,
    DEFAULT_CALLBACK_GRACE,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_CALLBACK_PORT_ATTEMPTS,
    DEFAULT_CALLBACK_TIMEOUT,
)
from ..utils.errors import CallbackTimeoutError

logger = logging.getLogger(__name__)


def _create_success_html() -> str:
    """Create a success HTML page after the SSO redirect."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
        <title>EVE Online Authentication</title>
        <style>
            body {
                font-family: Arial, sans-serif;
                text-align: center;
                padding: 50px;
                background: linear-gradient(135deg, #1a1a1a, #2d2d2d);
                color: white;
                margin: 0;
            }
            .container {
                max-width: 500px;
                margin: 0 auto;
                background: #333;
                padding: 40px;
                border-radius: 10px;
                box-shadow: 0 4px 20px rgba(0,0,0,0.3);
            }
            .success-icon {
                font-size: 64px;
                color: #28a745;
                margin-bottom: 20px;
            }
            h1 {
                color: #28a745;
            }
            .close-note {
                margin-top: 30px;
                font-style: italic;
                color: #ccc;
            }
        </style>
    </head>
    <body>
        <div class="container">
            <div class="success-icon">&#10004;</div>
            <h1>Authentication Successful!</h1>
            <p>Your EVE Online character has been authenticated.</p>
            <p>You can close this window and return to the application.</p>
            <div class="close-note">This window will close automatically in 5 seconds...</div>
        </div>
        <script>setTimeout(function () { window.close(); }, 5000);</script>
    </body>
    </html>
    """


def _create_error_html(error_message: str) -> str:
    """Create an error HTML page."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <title>Authentication Failed</title>
        <style>
            body {{
                font-family: Arial, sans-serif;
                text-align: center;
                padding: 50px;
                background: linear-gradient(135deg, #1a1a1a, #2d2d2d);
                color: white;
                margin: 0;
            }}
            .container {{
                max-width: 500px;
                margin: 0 auto;
                background: #333;
                padding: 40px;
                border-radius: 10px;
            }}
            .error-message {{
                color: #ee5a5a;
                background: #2a1f1f;
                padding: 15px;
                border-radius: 8px;
                margin: 20px 0;
            }}
        </style>
    </head>
    <body>
        <div class="container">
            <div style="font-size: 64px;">&#10060;</div>
            <h1>Authentication Failed</h1>
            <div class="error-message">{html.escape(error_message)}</div>
            <p>Please try again from the application.</p>
        </div>
    </body>
    </html>
    """


class CallbackListener:
    """
    Single-use loopback HTTP listener for the SSO redirect.

    The listener binds its own socket (trying successive ports on conflict),
    serves it with uvicorn on the running event loop and resolves exactly one
    pending result with the raw redirect URL.
    """

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = CALLBACK_PATH,
        max_port_attempts: int = DEFAULT_CALLBACK_PORT_ATTEMPTS,
        grace_period: float = DEFAULT_CALLBACK_GRACE,
    ) -> None:
        self.host = host
        self.preferred_port = port
        self.port = port
        self.path = path
        self.max_port_attempts = max_port_attempts
        self.grace_period = grace_period
        self.app = FastAPI()
        self.server: Optional[uvicorn.Server] = None
        self.is_running = False

        self._socket: Optional[socket.socket] = None
        self._serve_task: Optional["asyncio.Task[None]"] = None
        self._result: Optional["asyncio.Future[str]"] = None
        self._shutdown_handle: Optional[asyncio.TimerHandle] = None

        self._setup_callback_route()

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    def _setup_callback_route(self) -> None:
        """Setup the SSO callback route."""

        @self.app.get(self.path)
        async def sso_callback(request: Request) -> HTMLResponse:
            """Handle the SSO redirect."""
            query = request.url.query
            callback_url = f"{self.redirect_uri}?{query}" if query else self.redirect_uri

            if self._result is not None and not self._result.done():
                self._result.set_result(callback_url)
                self._schedule_shutdown()
                logger.info("SSO callback received")
            else:
                logger.debug("Ignoring repeated SSO callback")

            error = request.query_params.get("error")
            if error:
                description = request.query_params.get("error_description") or ""
                return HTMLResponse(
                    content=_create_error_html(f"{error} {description}".strip()),
                    status_code=400,
                )
            return HTMLResponse(content=_create_success_html())

    def _bind_socket(self) -> socket.socket:
        last_error: Optional[OSError] = None
        for attempt in range(self.max_port_attempts):
            port = self.preferred_port + attempt
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                sock.bind((self.host, port))
            except OSError as e:
                sock.close()
                last_error = e
                logger.info(f"Port {port} is in use, trying {port + 1}")
                continue
            self.port = sock.getsockname()[1]
            return sock

        raise OSError(
            f"No free callback port in {self.preferred_port}-"
            f"{self.preferred_port + self.max_port_attempts - 1}: {last_error}"
        )

    async def start(self) -> str:
        """
        Bind the listener and start serving.

        Returns:
            The redirect URI for the port actually bound.

        Raises:
            OSError: If no port could be bound or the server failed to start.
        """
        if self.is_running:
            logger.info("Callback listener is already running")
            return self.redirect_uri

        loop = asyncio.get_running_loop()
        self._socket = self._bind_socket()
        self._result = loop.create_future()

        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            log_config=None,
            lifespan="off",
        )
        self.server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self.server.serve(sockets=[self._socket]))
        self._serve_task.add_done_callback(self._on_serve_done)

        # Wait for server to start
        max_wait = 3.0
        waited = 0.0
        while not self.server.started:
            if self._serve_task.done() or waited >= max_wait:
                await self.stop()
                raise OSError(f"Failed to start callback listener on {self.host}:{self.port}")
            await asyncio.sleep(0.01)
            waited += 0.01

        self.is_running = True
        logger.info(f"Callback listener started on {self.redirect_uri}")
        return self.redirect_uri

    async def wait_for_callback(self, timeout: float = DEFAULT_CALLBACK_TIMEOUT) -> str:
        """
        Wait for the SSO redirect.

        Returns:
            The full redirect URL, including its query string.

        Raises:
            CallbackTimeoutError: If no callback arrives within ``timeout``.
                The listener is torn down before raising.
        """
        if self._result is None:
            raise RuntimeError("Callback listener has not been started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            await self.stop()
            raise CallbackTimeoutError(
                f"Authentication timeout - no callback received within {timeout:.0f} seconds"
            )

    def _schedule_shutdown(self) -> None:
        loop = asyncio.get_running_loop()
        self._shutdown_handle = loop.call_later(self.grace_period, self._request_exit)

    def _request_exit(self) -> None:
        if self.server is not None:
            self.server.should_exit = True

    def _on_serve_done(self, task: "asyncio.Task[None]") -> None:
        self.is_running = False
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Callback listener error: {task.exception()}")
        logger.info("Callback listener stopped")

    async def stop(self) -> None:
        """Stop the listener now, cancelling any pending grace period."""
        if self._shutdown_handle is not None:
            self._shutdown_handle.cancel()
            self._shutdown_handle = None
        if self._result is not None and not self._result.done():
            self._result.cancel()

        self._request_exit()
        if self._serve_task is not None and not self._serve_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._serve_task), timeout=3.0)
            except asyncio.TimeoutError:
                self._serve_task.cancel()
                logger.warning("Callback listener did not shut down in time; cancelled")
        elif self._socket is not None:
            self._socket.close()
            self._socket = None
        self.is_running = False

    async def closed(self) -> None:
        """Wait until the listener has shut itself down."""
        if self._serve_task is not None:
            await asyncio.shield(self._serve_task)
