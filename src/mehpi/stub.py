"""
mehpi Stub

Record-and-respond unit registered for a route.

A Stub is callable. Each call is appended to its history and answered with
the configured behavior:
- returns(value): a fixed return value
- computes(func): a value computed per call from the call arguments
- raises(exc): an exception raised on every call

History is recorded through unittest.mock so the familiar assertion helpers
(assert_called_once, assert_called_with, ...) are available.
"""

from typing import Any, Callable, List, Optional, Pattern, Union
from unittest.mock import Mock


RouteKey = Union[str, Pattern[str]]


class Stub:
    """
    Stub standing in for a route handler.

    Example:
        stub = registry.register('PUT', '/sf').returns(420)
        ...
        assert stub.was_called
        assert stub.call_count == 1
    """

    def __init__(self, method: str, route: RouteKey, priority: Optional[int] = None):
        self.method = method
        self.route = route
        self.priority = priority
        self._mock = Mock(return_value=None)

    @property
    def key(self) -> str:
        """Route identity used in logs, e.g. 'GET /users' or 'GET /[0-9]+/'."""
        if isinstance(self.route, str):
            return f"{self.method} {self.route}"
        return f"{self.method} /{self.route.pattern}/ (priority {self.priority})"

    # Behavior

    def returns(self, value: Any) -> 'Stub':
        """Answer every call with a fixed value."""
        self._mock.side_effect = None
        self._mock.return_value = value
        return self

    def computes(self, func: Callable[..., Any]) -> 'Stub':
        """Answer every call with func(*args, **kwargs)."""
        self._mock.side_effect = func
        return self

    def raises(self, exc: Union[BaseException, type]) -> 'Stub':
        """Raise exc on every call."""
        self._mock.side_effect = exc
        return self

    def __call__(self, *args, **kwargs) -> Any:
        return self._mock(*args, **kwargs)

    # History

    @property
    def was_called(self) -> bool:
        return self._mock.called

    @property
    def call_count(self) -> int:
        return self._mock.call_count

    @property
    def call_args(self):
        """Arguments of the most recent call, or None."""
        return self._mock.call_args

    @property
    def call_args_list(self):
        return self._mock.call_args_list

    @property
    def calls(self) -> List[Any]:
        """First positional argument of each call (the request context for served requests)."""
        return [c.args[0] if c.args else None for c in self._mock.call_args_list]

    def reset_history(self):
        """Forget recorded calls, keeping the configured behavior."""
        self._mock.reset_mock()

    def assert_called(self):
        self._mock.assert_called()

    def assert_called_once(self):
        self._mock.assert_called_once()

    def assert_not_called(self):
        self._mock.assert_not_called()

    def assert_called_with(self, *args, **kwargs):
        self._mock.assert_called_with(*args, **kwargs)

    def __repr__(self) -> str:
        return f"<Stub {self.key} calls={self.call_count}>"
