from concurrent.futures import Future
from io import BytesIO
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .middleware import CacheMiddleware
from .model import CacheOptions, Request, Response
from .storage import FileStorage, Storage


logger = logging.getLogger(__name__)


class CachedHTTPAdapter(HTTPAdapter):
    """
    A transport adapter that serves responses from a `Storage` while they are fresh.

    Mount it on a session for the prefixes that should be cached:

        session.mount('https://', create(Path('~/.cache/http').expanduser(), ttl=600))

    The ttl of a single call can be overridden by calling `send()` directly.
    """

    def __init__(self, storage: Storage, options: Optional[CacheOptions] = None, *args, **kw) -> None:
        super().__init__(*args, **kw)
        self.middleware = CacheMiddleware(storage, options)

    @property
    def storage(self) -> Storage:
        return self.middleware.storage

    def _send_upstream(self, requests_request: requests.PreparedRequest, **kw) -> requests.Response:
        return super().send(requests_request, **kw)

    def send(self, requests_request: requests.PreparedRequest, ttl: Optional[int] = None,
             **kw) -> requests.Response:
        """
        Send a request, or answer it from the cache.

        @param requests_request
          The request to send.
        @param ttl
          The ttl of this call in seconds. Defaults to the adapter's ttl, and 0
          disables caching for the call.
        """
        request = Request(method=requests_request.method,
                          uri=requests_request.url,
                          headers=dict(requests_request.headers),
                          body=requests_request.body)

        options = {}  # type: Mapping[str, Any]
        if ttl is not None:
            options = {'ttl': ttl}
        if request.body is not None and not isinstance(request.body, (bytes, str)):
            # A streamed body cannot be hashed without consuming it.
            logger.info('Not caching {} {}: the request body is streamed.'.format(request.method, request.uri))
            options = {'ttl': 0}

        upstream = []

        def forward(request: Request, options: Optional[Mapping[str, Any]]) -> 'Future[Response]':
            future = Future()
            try:
                requests_response = self._send_upstream(requests_request, **kw)
                upstream.append(requests_response)
                # Only a response that will be stored has its body read here.
                if self.middleware.resolve_ttl(options) > 0 and requests_response.status_code < 300:
                    body = BytesIO(requests_response.content)
                else:
                    body = requests_response.raw
                future.set_result(Response(status=requests_response.status_code,
                                           reason=requests_response.reason,
                                           headers=dict(requests_response.headers),
                                           body=body,
                                           version=getattr(requests_response.raw, 'version', 11)))
            except Exception as e:
                future.set_exception(e)
            return future

        response = self.middleware(forward)(request, options).result()
        if upstream:
            # Forwarded: hand back the transport's own response, cookies and raw stream included.
            return upstream[0]

        logger.info('Answering {} {} from the cache.'.format(request.method, request.uri))
        result = requests.Response()
        result.status_code = response.status
        result.reason = response.reason
        result.headers = CaseInsensitiveDict(response.headers)
        result.encoding = get_encoding_from_headers(result.headers)
        result.raw = response.body
        result.url = requests_request.url
        result.request = requests_request
        result.connection = self
        return result

    def close(self):
        self.storage.close()
        super().close()


def create(directory: Path, ttl: Optional[int] = 0, headers: Sequence[str] = ()) -> CachedHTTPAdapter:
    """
    Build an adapter caching responses in files below `directory`.
    """
    return CachedHTTPAdapter(FileStorage(directory), CacheOptions(ttl=ttl, headers=headers))
