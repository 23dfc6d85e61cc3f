"""
Derives cache keys from requests.

A key is the SHA-1 hex digest of the request method, URI, selected header values
and body, joined by a separator. Only the headers named in the filter take part,
so two requests differing only in other headers share a key.
"""

import hashlib
from typing import Iterable, List, Union

from requests.structures import CaseInsensitiveDict

from .model import Request
from .util import is_falsy


DEFAULT_SEPARATOR = '|'


def _to_bytes(value: Union[bytes, str, None]) -> bytes:
    if value is None:
        return b''
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode('utf-8')


def _header_values(value) -> List[bytes]:
    if isinstance(value, (str, bytes)):
        value = [value]
    return [_to_bytes(v) for v in value if not is_falsy(v)]


def derive_key(request: Request,
               header_filter: Iterable[str] = (),
               separator: str = DEFAULT_SEPARATOR,
               keep_empty_fields: bool = False) -> str:
    """
    Compute the cache key of `request`.

    Fields that are empty or `"0"` are left out before joining, which means
    a request with body `"0"` gets the same key as one without a body. Pass
    `keep_empty_fields=True` to keep every field in place instead, at the cost
    of producing different keys than the default.

    @param request
      The request to derive a key for.
    @param header_filter
      The names of the headers that take part in the key, in order. Names are
      matched case-insensitively.
    @param separator
      The string joining the parts of the key.
    @param keep_empty_fields
      Whether empty fields keep their place in the key.
    @return
      A 40 character hex digest.
    """
    sep = separator.encode('utf-8')
    request_headers = CaseInsensitiveDict(request.headers or {})

    headers = []
    for name in dict.fromkeys(header_filter):
        if name in request_headers:
            headers.append(sep.join(_header_values(request_headers[name])))

    fields = [
        _to_bytes(request.method),
        _to_bytes(request.uri).strip(),
        sep.join(headers),
        _to_bytes(request.body).strip(),
    ]
    if not keep_empty_fields:
        fields = [f for f in fields if not is_falsy(f)]

    return hashlib.sha1(sep.join(fields)).hexdigest()
