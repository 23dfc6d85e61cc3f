from concurrent.futures import Future
import logging
import time
from typing import Any, Callable, Mapping, Optional

from requests.structures import CaseInsensitiveDict

from .key import DEFAULT_SEPARATOR, derive_key
from .model import CacheOptions, Request, Response
from .storage import CACHED_HEADER, Storage


logger = logging.getLogger(__name__)

Handler = Callable[[Request, Optional[Mapping[str, Any]]], 'Future[Response]']


class CacheMiddleware:
    """
    Wraps one stage of a request pipeline with a ttl based response cache.

    A pipeline stage is a callable taking a request and a mapping of per-call
    options and returning a future of the response. Calling the middleware with
    the next stage returns a stage of the same shape:

        handler = CacheMiddleware(FileStorage(directory), CacheOptions(ttl=60))(send)
        response = handler(request, {'ttl': 300}).result()

    A fresh stored response short-circuits the pipeline. Otherwise the request is
    forwarded, and a successful (status < 300) response is stored once the future
    completes. Failing to store a response never affects the caller.
    """

    def __init__(self,
                 storage: Storage,
                 options: Optional[CacheOptions] = None,
                 clock: Callable[[], float] = time.time,
                 separator: str = DEFAULT_SEPARATOR,
                 keep_empty_fields: bool = False) -> None:
        self.__storage = storage
        self.__options = options if options is not None else CacheOptions()
        self.__clock = clock
        self.__separator = separator
        self.__keep_empty_fields = keep_empty_fields

    @property
    def storage(self) -> Storage:
        return self.__storage

    @property
    def options(self) -> CacheOptions:
        return self.__options

    def __call__(self, next_handler: Handler) -> Handler:
        def handler(request: Request, options: Optional[Mapping[str, Any]] = None) -> 'Future[Response]':
            return self.handle(next_handler, request, options)
        return handler

    def get_key(self, request: Request) -> str:
        return derive_key(request, self.__options.headers, self.__separator, self.__keep_empty_fields)

    def invalidate(self, request: Request) -> bool:
        """
        Remove the stored response for `request`, if any.
        """
        return self.__storage.delete(self.get_key(request))

    def resolve_ttl(self, options: Optional[Mapping[str, Any]]) -> int:
        """
        The ttl of one call: its own `ttl` option, else the configured default.
        """
        ttl = (options or {}).get('ttl')
        if ttl is None:
            ttl = self.__options.ttl
        return ttl or 0

    def _is_fresh(self, response: Response, ttl: int) -> bool:
        try:
            written = int(CaseInsensitiveDict(response.headers).get(CACHED_HEADER, 0))
        except (TypeError, ValueError):
            written = 0
        return self.__clock() < ttl + written

    def handle(self, next_handler: Handler, request: Request,
               options: Optional[Mapping[str, Any]] = None) -> 'Future[Response]':
        ttl = self.resolve_ttl(options)
        key = self.get_key(request)

        if ttl > 0:
            response = self.__storage.get(key)
            if response is not None:
                if self._is_fresh(response, ttl):
                    logger.info('Serving {} {} from cache entry {}.'.format(request.method, request.uri, key))
                    future = Future()
                    future.set_result(response)
                    return future
                logger.info('Cache entry {} is stale.'.format(key))

        future = next_handler(request, options)

        def write_back(done: 'Future[Response]') -> None:
            if done.cancelled() or done.exception() is not None:
                return
            response = done.result()
            if ttl <= 0 or response.status >= 300:
                return
            try:
                if not self.__storage.set(key, response, ttl):
                    logger.warning('Could not store cache entry {}.'.format(key))
            except Exception:
                logger.exception('Unexpected error occurred while storing cache entry {}'.format(key))

        future.add_done_callback(write_back)
        return future
