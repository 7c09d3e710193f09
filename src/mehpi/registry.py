"""
mehpi Stub Registry

Route-resolution engine for the mock server.

Two tables are kept:
- exact routes, keyed by 'METHOD PATH'
- pattern routes, one ordered bucket per priority (0..100)

Resolution checks exact routes first, then scans pattern buckets from the
highest priority down, trying entries in registration order.

Example:
    registry = StubRegistry()
    registry.register('PUT', '/sf').returns(420)
    registry.register(re.compile(r'[0-9]+'), priority=0).returns(200)

    stub = registry.resolve('GET', '/123')
"""

import logging
import numbers
import re
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from .errors import InvalidPriorityError, InvalidRouteKeyError
from .stub import RouteKey, Stub


PRIORITY_LIMIT = 100
PRIORITY_DEFAULT = 10
DEFAULT_METHOD = 'GET'

logger = logging.getLogger("mehpi.registry")


@dataclass
class PatternEntry:
    """A pattern route inside a priority bucket."""

    pattern: Pattern[str]
    stub: Stub

    @property
    def identity(self) -> Tuple[str, int]:
        """Serialized form used to detect re-registration of the same pattern."""
        return pattern_identity(self.pattern)


def pattern_identity(pattern: Pattern[str]) -> Tuple[str, int]:
    return (pattern.pattern, pattern.flags)


def _is_pattern(value) -> bool:
    return isinstance(value, re.Pattern)


class StubRegistry:
    """
    Owns every registered stub and resolves requests to them.

    Exact routes and pattern routes follow different re-registration policies:
    registering an exact route twice hands back the existing Stub (callers may
    hold a reference to it), while registering an equal pattern at the same
    priority replaces the Stub in place.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self):
        """Drop all stubs and their call histories."""
        with self._lock:
            self.exact: Dict[str, Stub] = {}
            self.patterns: List[List[PatternEntry]] = [[] for _ in range(PRIORITY_LIMIT + 1)]
        logger.debug("Registry reset")

    @staticmethod
    def _normalize(method, path) -> Tuple[str, RouteKey]:
        # register('/foo') means register('GET', '/foo')
        if not path:
            path = method
            method = DEFAULT_METHOD
        if not isinstance(method, str):
            raise InvalidRouteKeyError(method)
        if not isinstance(path, str) and not _is_pattern(path):
            raise InvalidRouteKeyError(path)
        return method.upper(), path

    @staticmethod
    def _validate_priority(priority) -> int:
        if priority is None:
            return PRIORITY_DEFAULT
        if isinstance(priority, bool) or not isinstance(priority, numbers.Integral):
            raise InvalidPriorityError(priority, PRIORITY_LIMIT)
        if not 0 <= priority <= PRIORITY_LIMIT:
            raise InvalidPriorityError(priority, PRIORITY_LIMIT)
        return int(priority)

    def register(self, method, path=None, priority=None) -> Stub:
        """
        Register a stub for a route and return it.

        Args:
            method: HTTP method, or the path when called with a single argument
            path: Literal path string or compiled regular expression
            priority: Pattern priority (0..100, default 10); ignored for strings

        Returns:
            The Stub now answering the route

        Raises:
            InvalidRouteKeyError: path is neither a string nor a pattern
            InvalidPriorityError: priority is not an integer in 0..100
        """
        method, path = self._normalize(method, path)

        if isinstance(path, str):
            key = f"{method} {path}"
            with self._lock:
                stub = self.exact.get(key)
                if stub is None:
                    stub = Stub(method, path)
                    self.exact[key] = stub
                    logger.debug(f"String stub added: {key}")
                else:
                    logger.debug(f"String stub already declared: {key}")
            return stub

        priority = self._validate_priority(priority)
        stub = Stub(method, path, priority)
        identity = pattern_identity(path)

        with self._lock:
            bucket = self.patterns[priority]
            for i, entry in enumerate(bucket):
                if entry.identity == identity:
                    bucket[i] = PatternEntry(pattern=path, stub=stub)
                    logger.debug(f"Regex stub replaced: {stub.key}")
                    return stub
            bucket.append(PatternEntry(pattern=path, stub=stub))

        logger.debug(f"Regex stub added: {stub.key}")
        return stub

    def resolve(self, method, path=None) -> Optional[Stub]:
        """
        Find the stub answering a request.

        Exact routes always win. Otherwise the first matching pattern in the
        highest-priority bucket is used. Passing a compiled pattern instead of
        a path returns the stub registered for that pattern, so assertions can
        look it up the same way it was declared.

        Returns:
            The matching Stub, or None when no route matches
        """
        method, path = self._normalize(method, path)
        if _is_pattern(path):
            return self._lookup_pattern(path)

        stub = self.exact.get(f"{method} {path}")
        if stub is not None:
            logger.debug(f"Found string match: {method} {path}")
            return stub

        patterns = self.patterns
        for priority in range(PRIORITY_LIMIT, -1, -1):
            # Copy so a concurrent register() cannot disturb the scan
            for entry in list(patterns[priority]):
                if entry.pattern.search(path):
                    logger.debug(f"Found regular expression: {method} {path} {entry.stub.key}")
                    return entry.stub

        return None

    def _lookup_pattern(self, pattern: Pattern[str]) -> Optional[Stub]:
        identity = pattern_identity(pattern)
        for priority in range(PRIORITY_LIMIT, -1, -1):
            for entry in list(self.patterns[priority]):
                if entry.identity == identity:
                    return entry.stub
        return None

    def routes(self) -> List[str]:
        """Declared route keys in resolution order."""
        keys = list(self.exact)
        for priority in range(PRIORITY_LIMIT, -1, -1):
            keys.extend(entry.stub.key for entry in list(self.patterns[priority]))
        return keys

    def __len__(self) -> int:
        return len(self.exact) + sum(len(bucket) for bucket in self.patterns)
