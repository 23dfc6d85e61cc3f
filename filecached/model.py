"""
Defines types to use in the caching interface.

These types are as simple as possible in order to most conveniently consume and
produce instances of them.
"""

from dataclasses import dataclass, field
from typing import IO, Mapping, Optional, Sequence, Union


@dataclass
class Request:
    """
    Represents an arbitrary request, excluding parts not used for caching.
    """

    method: str
    """
    The HTTP method of the request. E.g., "GET".
    """

    uri: str
    """
    The full target of the request, including scheme, host, path and query.
    """

    headers: Mapping[str, Union[str, Sequence[str]]]
    """
    All the headers being sent with the request. A header may carry several
    values.
    """

    body: Union[bytes, str, None] = None
    """
    The request payload, if any.
    """


@dataclass
class Response:
    """
    Represents an arbitrary response, without any bells and whistles.

    We deliberately do not use requests' `Response` here. It is trivial to
    convert one of our `Response` instances to a requests `Response`.
    """

    status: int
    """
    The status code of the response. E.g., 200 or 400.
    """

    reason: str
    """
    The reason string, which relates to the status code.
    """

    headers: Mapping[str, str]
    """
    All the headers sent with the response.
    """

    body: IO[bytes] = field(compare=False)
    """
    A file-like object containing the response payload.
    """

    version: int = 11
    """
    The HTTP protocol version, e.g. 11 for HTTP/1.1.
    """


@dataclass
class CacheOptions:
    """
    Per-instance configuration of the cache middleware.
    """

    ttl: Optional[int] = 0
    """
    The default time-to-live in seconds. Zero or `None` disables caching for
    requests that do not ask for a ttl themselves.
    """

    headers: Sequence[str] = ()
    """
    The ordered names of request headers that take part in the cache key.
    Headers not listed here never affect the key.
    """
