"""
mehpi Response Shaping

Turns the value returned by a stub into a status/body/content-type triple.

Mapping rules:
- number: status code, default body
- string: body, status 200
- mapping: 'status' (default 200) and 'body'; mapping or list bodies are
  serialized as JSON
- anything else: status 200, default body
"""

import json
import numbers
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping


TEXT_PLAIN = 'text/plain'
APPLICATION_JSON = 'application/json'

DEFAULT_STATUS = 200
DEFAULT_BODY = 'response'

NOT_DECLARED_STATUS = 500
NOT_DECLARED_BODY = 'The requested route has not been declared.'
STUB_ERROR_BODY = 'The stub for the requested route raised an error.'

# Final response codes the transport can send
STATUS_MIN = 200
STATUS_MAX = 599


@dataclass(frozen=True)
class ResponseDescriptor:
    """Transport-independent description of an HTTP response."""

    status: int = DEFAULT_STATUS
    body: str = DEFAULT_BODY
    content_type: str = TEXT_PLAIN

    @property
    def headers(self) -> Dict[str, str]:
        return {'Content-Type': self.content_type}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _stringify(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return value.decode('utf-8', errors='replace')
    return str(value)


def _status(value) -> int:
    status = int(value)
    if not STATUS_MIN <= status <= STATUS_MAX:
        raise ValueError(f"status must be between {STATUS_MIN} and {STATUS_MAX} (got {value!r})")
    return status


def not_declared() -> ResponseDescriptor:
    """Response for a request no stub answers."""
    return ResponseDescriptor(status=NOT_DECLARED_STATUS, body=NOT_DECLARED_BODY)


def stub_error() -> ResponseDescriptor:
    """Response for a stub that raised while answering."""
    return ResponseDescriptor(status=NOT_DECLARED_STATUS, body=STUB_ERROR_BODY)


def shape_response(result: Any) -> ResponseDescriptor:
    """
    Map a stub's return value to a response descriptor.

    Args:
        result: Whatever the stub returned

    Returns:
        ResponseDescriptor for the HTTP response

    Raises:
        TypeError: a structured body cannot be serialized as JSON
        ValueError: the status code cannot be sent as a final HTTP response
    """
    if _is_number(result):
        return ResponseDescriptor(status=_status(result))

    if isinstance(result, str):
        return ResponseDescriptor(body=result)

    if isinstance(result, Mapping):
        status = result.get('status')
        status = _status(status) if _is_number(status) else DEFAULT_STATUS

        body = result.get('body')
        if isinstance(body, (Mapping, list, tuple)):
            return ResponseDescriptor(
                status=status,
                body=json.dumps(body, separators=(',', ':')),
                content_type=APPLICATION_JSON
            )
        if body:
            return ResponseDescriptor(status=status, body=_stringify(body))
        return ResponseDescriptor(status=status)

    return ResponseDescriptor()
