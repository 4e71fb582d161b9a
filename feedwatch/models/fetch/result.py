"""Outcome types for a single fetch attempt.

Every call to :meth:`ConditionalFetcher.fetch` produces exactly one of:

- :class:`Data`: a decoded payload (fresh from the network or from the
  request cache),
- :class:`Unmodified`: the server confirmed the known version is current,
- :class:`Failed`: carrying one of the :class:`FetchError` kinds below.

Failures travel through the same return value as successes; ``fetch``
itself does not raise them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class FetchError(Exception):
    """Base class for every failure kind a fetch can report."""


class TransportError(FetchError):
    """No HTTP response was received (DNS, connect, timeout, protocol)."""


class RequestFailed(FetchError):
    """An HTTP response arrived with a status outside the accepted range."""

    def __init__(self, status_code: int, body: Optional[bytes] = None) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class DeserializationFailed(FetchError):
    """The body arrived but did not decode into the expected type."""


class InvalidURL(FetchError):
    """A request URL could not be built from the caller's input."""


class InvalidParameter(FetchError):
    """A query parameter value cannot be rendered into a URL."""

    def __init__(self, name: str, value: Any) -> None:
        super().__init__(f"Invalid query parameter {name}={value!r}")
        self.name = name
        self.value = value


@dataclass(frozen=True, slots=True)
class Data(Generic[T]):
    """A decoded payload."""

    payload: T
    from_cache: bool = False


@dataclass(frozen=True, slots=True)
class Unmodified:
    """The resource has not changed since the known version marker."""


@dataclass(frozen=True, slots=True)
class Failed:
    """The fetch attempt failed; ``error`` says how."""

    error: FetchError


FetchResult = Union[Data[T], Unmodified, Failed]


@dataclass(frozen=True, slots=True)
class VersionUpdate:
    """A version marker observed on a response for ``url``."""

    url: str
    marker: str
