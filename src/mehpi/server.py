"""
mehpi Mock Server

FastAPI-based HTTP mock server answering requests from registered stubs.

Features:
- Exact and regular-expression routes with priorities
- Stub call recording for assertions
- Background uvicorn listener with future-based start/stop
- Request metrics and trace logging
"""

from __future__ import annotations  # Enable forward references for type hints

import socket
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from fastapi import FastAPI, Request, Response
import uvicorn

from .errors import BindError, CloseError
from .registry import StubRegistry
from .responses import ResponseDescriptor, not_declared, shape_response, stub_error
from .stub import Stub


Callback = Callable[[Optional[BaseException]], None]


@dataclass
class MockConfig:
    """Configuration for mock server behavior."""

    # Server options
    host: str = "127.0.0.1"
    port: int = 0  # 0 lets the OS pick a free port
    log_level: str = "warning"
    access_log: bool = False

    # Lifecycle
    startup_timeout: float = 5.0  # Seconds to wait for the listener to come up
    shutdown_timeout: float = 5.0  # Seconds to wait for the listener to close

    # Always answer GET / with a default 200
    stub_index: bool = False


@dataclass
class MockMetrics:
    """Track mock server metrics."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    stub_errors: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'total_requests': self.total_requests,
            'matched_requests': self.matched_requests,
            'unmatched_requests': self.unmatched_requests,
            'stub_errors': self.stub_errors,
            'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
            'start_time': self.start_time
        }


@dataclass
class RequestContext:
    """Request details handed to a stub on every call."""

    method: str
    url: str
    path: str = ""
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class ServerState(Enum):
    CREATED = "created"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"
    STOPPED = "stopped"


class MockServer:
    """
    Mock API server. Stub any route and assert on how it was called.

    Example:
        api = MockServer(13571)
        api.start().result(timeout=5)

        api.stub('PUT', '/sf').returns(420)
        api.stub(re.compile(r'[0-9]+'), priority=0).returns({'status': 200, 'body': {'id': 1}})

        requests.put(f'{api.url}/sf')  # -> 420
        api.get_stub('PUT', '/sf').assert_called_once()

        api.restore()
        api.stop().result(timeout=5)
    """

    def __init__(self, port: Optional[int] = None, config: Optional[MockConfig] = None):
        """
        Initialize mock server.

        Args:
            port: TCP port to bind (0 picks a free port); overrides config.port
            config: Optional MockConfig for server behavior
        """
        self.config = config or MockConfig()
        if port is not None:
            self.config.port = port
        if isinstance(self.config.port, bool) or not isinstance(self.config.port, int) \
                or not 0 <= self.config.port <= 65535:
            raise ValueError(f"'port' must be an integer between 0 and 65535 (got {self.config.port!r})")

        self.logger = logging.getLogger("mehpi.server")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        self.registry = StubRegistry()
        self.metrics = MockMetrics()
        self.state = ServerState.CREATED

        self._state_lock = threading.Lock()
        self._metrics_lock = threading.Lock()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self._start_future: Optional[Future] = None
        self._stop_future: Optional[Future] = None
        self._bound_port: Optional[int] = None

        self.restore()
        self.app = self._create_app()

    # Stubs

    def stub(self, method, path=None, priority=None) -> Stub:
        """
        Return the stub for a route, declaring it if needed.

        Args:
            method: HTTP method (ex: PUT, POST), or the path for GET
            path: Path to stub (ex: /users/me) or compiled regular expression
            priority: Priority of a regular expression route (0..100)
        """
        return self.registry.register(method, path, priority)

    def get_stub(self, method, path=None) -> Optional[Stub]:
        """Return the stub that would answer a request, or None."""
        return self.registry.resolve(method, path)

    def restore(self):
        """Remove every stubbed route. The listener keeps running."""
        self.registry.reset()
        if self.config.stub_index:
            self.registry.register('GET', '/')

    # Request handling

    def _create_app(self) -> FastAPI:
        """Create FastAPI application with the catch-all mock route."""
        app = FastAPI(
            title="mehpi Mock API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )

        async def mock_request(request: Request) -> Response:
            """Answer any request from the stub registry."""
            return await self._handle(request)

        # Plain Starlette route: no method list, so every method reaches the stubs
        app.add_route("/{path:path}", mock_request, methods=None)

        return app

    @staticmethod
    def _raw_url(request: Request) -> str:
        """Request target as sent by the client, without percent-decoding."""
        raw_path = request.scope.get('raw_path')
        if raw_path:
            path = raw_path.split(b'?', 1)[0].decode('latin-1')
        else:
            path = request.scope['path']
        query = request.scope.get('query_string', b'')
        if query:
            path = f"{path}?{query.decode('latin-1')}"
        return path

    async def _handle(self, request: Request) -> Response:
        url = self._raw_url(request)

        context = RequestContext(
            method=request.method,
            url=url,
            path=request.url.path,
            query=dict(request.query_params),
            headers=dict(request.headers),
            body=await request.body()
        )

        descriptor = self.handle_request(request.method, url, context)
        body = descriptor.body
        # 204 and 304 responses must not carry a body
        if descriptor.status in (204, 304):
            body = b""
        return Response(
            content=body,
            status_code=descriptor.status,
            headers=descriptor.headers
        )

    def _count(self, *counters: str):
        with self._metrics_lock:
            for counter in counters:
                setattr(self.metrics, counter, getattr(self.metrics, counter) + 1)

    def handle_request(self, method: str, path: str, context: Any = None) -> ResponseDescriptor:
        """
        Resolve, invoke and shape the response for one request.

        Args:
            method: HTTP method
            path: Request target as sent (not percent-decoded, with query string, if any)
            context: Value passed to the stub; a RequestContext when served over HTTP

        Returns:
            ResponseDescriptor to write back
        """
        self.logger.debug(f"Request: {method} {path}")

        stub = self.registry.resolve(method, path)
        if stub is None:
            self._count('total_requests', 'unmatched_requests')
            self.logger.warning(
                f"No stub found for {method} {path} (declared routes: {', '.join(self.registry.routes()) or 'none'})"
            )
            descriptor = not_declared()
        else:
            self._count('total_requests', 'matched_requests')
            try:
                descriptor = shape_response(stub(context))
            except Exception:
                self._count('stub_errors')
                self.logger.exception(f"Stub {stub.key} failed for {method} {path}")
                descriptor = stub_error()

        route = stub.key if stub else "<none>"
        self.logger.debug(
            f"Response: {route} -> {descriptor.status} {descriptor.body} ({descriptor.content_type})"
        )
        return descriptor

    def reset_metrics(self):
        """Reset metrics."""
        with self._metrics_lock:
            self.metrics = MockMetrics()

    # Lifecycle

    @property
    def port(self) -> int:
        """Bound port while listening, otherwise the configured port."""
        return self._bound_port if self._bound_port is not None else self.config.port

    @property
    def url(self) -> str:
        return f"http://{self.config.host}:{self.port}"

    @staticmethod
    def _attach(future: Future, done: Optional[Callback]) -> Future:
        if done is not None:
            future.add_done_callback(lambda f: done(f.exception()))
        return future

    def start(self, done: Optional[Callback] = None) -> Future:
        """
        Start the mock server in a background thread.

        Args:
            done: Optional callback, called once with None or the BindError

        Returns:
            Future resolving to None once listening, or failing with BindError.
            Starting a listening server resolves immediately.
        """
        with self._state_lock:
            if self.state == ServerState.LISTENING:
                future: Future = Future()
                future.set_result(None)
                return self._attach(future, done)
            if self.state == ServerState.STARTING:
                return self._attach(self._start_future, done)

            pending_stop = self._stop_future if self.state == ServerState.STOPPING else None
            self.state = ServerState.STARTING
            future = Future()
            self._start_future = future

        self._attach(future, done)
        threading.Thread(
            target=self._startup,
            args=(future, pending_stop),
            name=f"mehpi-start-{self.config.port}",
            daemon=True
        ).start()
        return future

    def _bind(self) -> socket.socket:
        return socket.create_server((self.config.host, self.config.port))

    def _startup(self, future: Future, pending_stop: Optional[Future]):
        if pending_stop is not None:
            try:
                pending_stop.result(timeout=self.config.shutdown_timeout)
            except Exception as e:
                self._fail_start(future, BindError(self.config.port, e, "previous stop did not complete"))
                return

        try:
            sock = self._bind()
        except OSError as e:
            self._fail_start(future, BindError(self.config.port, e))
            return

        config = uvicorn.Config(
            self.app,
            log_level=self.config.log_level,
            access_log=self.config.access_log,
            log_config=None,
            loop="asyncio",
            lifespan="off"
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={'sockets': [sock]},
            name=f"mehpi-server-{sock.getsockname()[1]}",
            daemon=True
        )
        thread.start()

        deadline = time.monotonic() + self.config.startup_timeout
        while not server.started and thread.is_alive() and time.monotonic() < deadline:
            time.sleep(0.01)

        if not server.started:
            server.should_exit = True
            thread.join(timeout=self.config.shutdown_timeout)
            sock.close()
            reason = "listener exited during startup" if not thread.is_alive() else "timed out waiting for listener"
            self._fail_start(future, BindError(self.config.port, message=reason))
            return

        with self._state_lock:
            self._server = server
            self._thread = thread
            self._socket = sock
            self._bound_port = sock.getsockname()[1]
            # A stop() issued during startup keeps the server STOPPING
            if self.state == ServerState.STARTING:
                self.state = ServerState.LISTENING

        self.logger.info(f"Server listening (port: {self._bound_port})")
        future.set_result(None)

    def _fail_start(self, future: Future, error: BindError):
        self.logger.error(str(error))
        with self._state_lock:
            if self.state == ServerState.STARTING:
                self.state = ServerState.STOPPED
        future.set_exception(error)

    def stop(self, done: Optional[Callback] = None) -> Future:
        """
        Stop the mock server.

        Args:
            done: Optional callback, called once with None or the CloseError

        Returns:
            Future resolving to None once the listener is closed, or failing
            with CloseError. Stopping a stopped server resolves immediately.
        """
        with self._state_lock:
            if self.state in (ServerState.CREATED, ServerState.STOPPED):
                future: Future = Future()
                future.set_result(None)
                return self._attach(future, done)
            if self.state == ServerState.STOPPING:
                return self._attach(self._stop_future, done)

            pending_start = self._start_future if self.state == ServerState.STARTING else None
            self.state = ServerState.STOPPING
            future = Future()
            self._stop_future = future

        self._attach(future, done)
        threading.Thread(
            target=self._shutdown,
            args=(future, pending_start),
            name=f"mehpi-stop-{self.port}",
            daemon=True
        ).start()
        return future

    def _shutdown(self, future: Future, pending_start: Optional[Future]):
        if pending_start is not None:
            try:
                pending_start.result(timeout=self.config.startup_timeout)
            except Exception:
                # Nothing is listening after a failed start
                pass

        with self._state_lock:
            server, thread, sock = self._server, self._thread, self._socket
            port = self.port

        error = None
        if server is not None:
            server.should_exit = True
            thread.join(timeout=self.config.shutdown_timeout)
            if thread.is_alive():
                error = CloseError(port, message="timed out waiting for listener to close")
            try:
                sock.close()
            except OSError as e:
                error = error or CloseError(port, e)

        with self._state_lock:
            self._server = self._thread = self._socket = None
            self._bound_port = None
            # A start() issued during shutdown keeps the server STARTING
            if self.state == ServerState.STOPPING:
                self.state = ServerState.STOPPED

        if error is not None:
            self.logger.error(str(error))
            future.set_exception(error)
            return

        self.logger.info(f"Server stopped (port: {port})")
        future.set_result(None)

    def __enter__(self) -> 'MockServer':
        self.start().result(timeout=self.config.startup_timeout + self.config.shutdown_timeout)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop().result(timeout=self.config.shutdown_timeout + 1)

    def __repr__(self) -> str:
        return f"<MockServer {self.url} {self.state.value} routes={len(self.registry)}>"


def create_mock_server(
    port: int = 0,
    host: str = "127.0.0.1",
    log_level: str = "warning",
    stub_index: bool = False,
    routes: Optional[List[tuple]] = None
) -> MockServer:
    """
    Convenience function to create and configure a mock server.

    Args:
        port: Port to bind to (0 picks a free port)
        host: Host to bind to
        log_level: Logging level for the server and uvicorn
        stub_index: Always answer GET / with 200
        routes: Optional (method, path, return_value) tuples to stub up front

    Returns:
        Configured MockServer instance

    Example:
        server = create_mock_server(routes=[('PUT', '/sf', 420)])
        with server:
            requests.put(f'{server.url}/sf')
    """
    config = MockConfig(
        host=host,
        port=port,
        log_level=log_level,
        stub_index=stub_index
    )
    server = MockServer(config=config)

    for method, path, value in routes or []:
        server.stub(method, path).returns(value)

    return server
