"""Request URL construction.

Builders raise :class:`InvalidURL` / :class:`InvalidParameter` before any
network call is made; callers turn those into empty results.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

import httpx

from feedwatch.models.fetch.result import InvalidParameter, InvalidURL

_SCHEMES = {"http", "https"}


def validate_url(url: str) -> httpx.URL:
    """Parse *url* and require an absolute http(s) URL with a host."""
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise InvalidURL(f"Invalid URL '{url}': {exc}") from exc
    if parsed.scheme not in _SCHEMES or not parsed.host:
        raise InvalidURL(f"Invalid URL '{url}': expected an absolute http(s) URL")
    return parsed


def _render(name: str, value: Any) -> str:
    # bool first: it is also an int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise InvalidParameter(name, value)


def build_url(
    base: str,
    endpoint: str = "",
    query: Optional[Mapping[str, Any]] = None,
) -> str:
    """Join *endpoint* onto *base* and append *query*.

    An *endpoint* that is already an absolute URL replaces *base*.
    Query values must be ``str``, ``int``, ``float`` or ``bool``.

    >>> build_url("https://api.github.com", "repos/org/repo/events")
    'https://api.github.com/repos/org/repo/events'
    """
    if endpoint and "://" in endpoint:
        url = validate_url(endpoint)
    else:
        url = validate_url(base)
        if endpoint:
            path = url.path.rstrip("/") + "/" + endpoint.lstrip("/")
            try:
                url = url.copy_with(path=path)
            except (httpx.InvalidURL, TypeError) as exc:
                raise InvalidURL(f"Invalid endpoint '{endpoint}': {exc}") from exc

    if query:
        params = {name: _render(name, value) for name, value in query.items()}
        url = url.copy_merge_params(params)
    return str(url)
