"""
mehpi

In-process mock HTTP API server for test suites.

This package provides:
- Stub registry with exact and regular-expression routes
- FastAPI/uvicorn mock server answering from registered stubs
- Call recording on every stub for assertions
"""

from .errors import (
    MehpiError,
    InvalidRouteKeyError,
    InvalidPriorityError,
    TransportError,
    BindError,
    CloseError
)
from .registry import StubRegistry, PRIORITY_DEFAULT, PRIORITY_LIMIT
from .responses import ResponseDescriptor, shape_response
from .server import (
    MockServer,
    MockConfig,
    MockMetrics,
    RequestContext,
    ServerState,
    create_mock_server
)
from .stub import Stub

__all__ = [
    # Server
    'MockServer',
    'MockConfig',
    'MockMetrics',
    'RequestContext',
    'ServerState',
    'create_mock_server',

    # Registry
    'StubRegistry',
    'Stub',
    'PRIORITY_DEFAULT',
    'PRIORITY_LIMIT',

    # Responses
    'ResponseDescriptor',
    'shape_response',

    # Errors
    'MehpiError',
    'InvalidRouteKeyError',
    'InvalidPriorityError',
    'TransportError',
    'BindError',
    'CloseError',
]

__version__ = '1.0.0'
