from abc import ABC, abstractmethod
import base64
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from io import BytesIO
import json
import logging
import os
from pathlib import Path
import tempfile
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import InvalidArgument, InvalidKey
from .model import Response
from .util import DataclassJSONDecoder, DataclassJSONEncoder, read_body


logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 604800
"""
One week, in seconds.
"""

CACHED_HEADER = 'Cached'


class Storage(ABC):
    """
    An abstraction of a response store.

    A store maps opaque string keys to responses and remembers when each entry
    was written. It does not decide freshness; that is left to the caller, who
    compares the `Cached` header of a returned response against its own ttl.

    Ordinary I/O failures are reported as a `False` result, never raised. Only
    invalid arguments raise, since those are programming errors.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """
        Fetch a stored response.

        @param key
          The key of the entry.
        @param default
          The value to return on a miss.
        @return
          The stored response, with a `Cached` header holding the write time as
          epoch seconds, or `default` if there is no readable entry.
        @throws InvalidKey
          If `key` is not a legal key.
        """

    @abstractmethod
    def set(self, key: str, response: Response, ttl: Optional[int] = None) -> bool:
        """
        Store a response, replacing any prior entry for `key`.

        The response body is read completely, and left replayable from the start
        so that the caller can still consume it.

        @return
          Whether the entry was written.
        @throws InvalidKey
          If `key` is not a legal key.
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Remove an entry.

        @return
          `True` if the entry was removed, `False` if it did not exist or could
          not be removed.
        @throws InvalidKey
          If `key` is not a legal key.
        """

    @abstractmethod
    def clear(self) -> bool:
        """
        Remove all entries.
        """

    @abstractmethod
    def clean(self, max_age: int = DEFAULT_MAX_AGE) -> bool:
        """
        Remove all entries older than `max_age` seconds.
        """

    @abstractmethod
    def has(self, key: str) -> bool:
        """
        Whether an entry exists for `key`.

        This is advisory only. Another process may remove or replace the entry
        right after this returns, so do not use it to guard a `get()` or `set()`.
        """

    def get_multiple(self, keys, default: Any = None) -> Dict[str, Any]:
        self.validate_multiple(keys)
        return {key: self.get(key, default) for key in keys}

    def set_multiple(self, values, ttl: Optional[int] = None) -> bool:
        """
        Store several responses.

        `values` is either a mapping or an iterable of `(key, response)` pairs.
        Every entry is attempted even if an earlier one fails.

        @return
          `True` only if every entry was written.
        """
        self.validate_multiple(values)
        if isinstance(values, Mapping):
            values = values.items()

        result = True
        for key, response in values:
            result = self.set(key, response, ttl) and result
        return result

    def delete_multiple(self, keys) -> bool:
        """
        Remove several entries. Every key is attempted even if an earlier one fails.

        @return
          `True` only if every entry was removed.
        """
        self.validate_multiple(keys)
        result = True
        for key in keys:
            result = self.delete(key) and result
        return result

    def validate_key(self, key: Any) -> None:
        if not isinstance(key, str):
            raise InvalidKey(key)

    def validate_multiple(self, values: Any) -> None:
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            raise InvalidArgument('The list of keys or key/value pairs must be a collection, got {!r}'.format(values))

    def close(self):
        """
        Close any resources associated with the storage.
        """


@dataclass
class FileStorageResponseModel:
    status: int
    reason: str
    headers: Dict[str, str]
    version: int


@dataclass
class FileStorageEntryModel:
    response: FileStorageResponseModel
    body: str
    """
    The base64 encoded response body.
    """


class CorruptEntry(Exception):
    def __init__(self, entry_path: Path):
        super().__init__('Corrupt cache entry: {}'.format(entry_path))
        self.__entry_path = entry_path

    @property
    def entry_path(self) -> Path:
        return self.__entry_path


class FileStorage(Storage):
    """
    Stores every entry as a file named by its key, directly inside one directory.

    The write time of an entry is the modification time of its file. There is no
    index, so `clear()` and `clean()` scan the whole directory. Nothing is locked:
    concurrent writers of the same key race, and the last one wins.
    """

    def __init__(self, directory: Path) -> None:
        """
        Initialize the file storage.

        @param directory
          The directory holding the entries. It is created if it does not exist.
        """
        self.__directory = Path(directory)
        self.__directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self.__directory

    def validate_key(self, key: Any) -> None:
        super().validate_key(key)
        if key in ('', '.', '..') or os.sep in key or (os.altsep and os.altsep in key):
            raise InvalidKey(key, 'The key must be usable as a file name')

    def _get_path(self, key: str) -> Path:
        self.validate_key(key)
        return self.__directory / key

    def _load_entry(self, entry_path: Path) -> Response:
        """
        Read an entry file.

        @throws CorruptEntry
          If the entry file could not be parsed.
        @throws OSError
          If the entry file could not be read.
        """
        with open(entry_path, 'r', encoding='utf-8') as f:
            content = f.read()
        try:
            entry = json.loads(content, cls=DataclassJSONDecoder, class_type=FileStorageEntryModel)
            body = base64.b64decode(entry.body, validate=True)
            return Response(status=entry.response.status,
                            reason=entry.response.reason,
                            headers=dict(entry.response.headers),
                            body=BytesIO(body),
                            version=entry.response.version)
        except (AttributeError, KeyError, TypeError, ValueError):
            raise CorruptEntry(entry_path)

    def get(self, key: str, default: Any = None) -> Any:
        entry_path = self._get_path(key)
        try:
            modified = entry_path.stat().st_mtime
            response = self._load_entry(entry_path)
        except FileNotFoundError:
            logger.info('No cache entry found for key {}.'.format(key))
            return default
        except CorruptEntry as e:
            logger.warning('Found a corrupt cache entry. Deleting the entry file {}.'.format(e.entry_path))
            try:
                e.entry_path.unlink()
            except OSError:
                logger.warning('Could not delete the corrupt entry file {}.'.format(e.entry_path))
            return default
        except (OSError, UnicodeDecodeError):
            logger.warning('Could not read the cache entry file {}.'.format(entry_path))
            return default

        response.headers[CACHED_HEADER] = str(int(modified))
        return response

    def set(self, key: str, response: Response, ttl: Optional[int] = None) -> bool:
        entry_path = self._get_path(key)
        body = read_body(response)
        entry = FileStorageEntryModel(
            response=FileStorageResponseModel(status=response.status,
                                              reason=response.reason,
                                              headers=dict(response.headers),
                                              version=response.version),
            body=base64.b64encode(body).decode('ascii'))

        # Write to a temporary file first so that readers never see a partial entry.
        temp_path = None
        try:
            with tempfile.NamedTemporaryFile(mode='w', encoding='utf-8', dir=self.__directory,
                                             prefix='.', suffix='.tmp', delete=False) as f:
                temp_path = Path(f.name)
                json.dump(entry, f, cls=DataclassJSONEncoder)
            os.replace(temp_path, entry_path)
        except OSError:
            logger.warning('Could not write the cache entry file {}.'.format(entry_path), exc_info=True)
            if temp_path is not None:
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            return False

        logger.info('Stored cache entry {}.'.format(key))
        return True

    def delete(self, key: str) -> bool:
        entry_path = self._get_path(key)
        try:
            os.unlink(entry_path)
        except FileNotFoundError:
            logger.info('No cache entry found for key {}. Nothing to delete.'.format(key))
            return False
        except OSError:
            logger.warning('Could not delete the cache entry file {}.'.format(entry_path), exc_info=True)
            return False
        return True

    def _sweep(self, should_delete: Callable[[os.DirEntry], bool]) -> bool:
        result = True
        try:
            with os.scandir(self.__directory) as it:
                for file in it:
                    if not file.is_file(follow_symlinks=False) or not should_delete(file):
                        continue
                    try:
                        os.unlink(file.path)
                    except FileNotFoundError:
                        pass
                    except OSError:
                        logger.warning('Could not delete {}.'.format(file.path), exc_info=True)
                        result = False
        except OSError:
            logger.warning('Could not scan the cache directory {}.'.format(self.__directory), exc_info=True)
            return False
        return result

    def clear(self) -> bool:
        logger.info('Deleting every entry in {}.'.format(self.__directory))
        return self._sweep(lambda file: True)

    def clean(self, max_age: int = DEFAULT_MAX_AGE) -> bool:
        logger.info('Deleting entries in {} older than {} seconds.'.format(self.__directory, max_age))
        now = time.time()

        def is_expired(file: os.DirEntry) -> bool:
            try:
                return now > file.stat(follow_symlinks=False).st_mtime + max_age
            except FileNotFoundError:
                return False

        return self._sweep(is_expired)

    def has(self, key: str) -> bool:
        entry_path = self._get_path(key)
        return entry_path.is_file() and os.access(entry_path, os.R_OK)


class MemoryStorage(Storage):
    """
    Keeps entries in a dictionary of the current process.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.__clock = clock
        self.__entries = {}  # type: Dict[str, Tuple[Response, bytes, int]]

    def get(self, key: str, default: Any = None) -> Any:
        self.validate_key(key)
        try:
            response, body, written = self.__entries[key]
        except KeyError:
            return default

        headers = dict(response.headers)
        headers[CACHED_HEADER] = str(written)
        return Response(status=response.status,
                        reason=response.reason,
                        headers=headers,
                        body=BytesIO(body),
                        version=response.version)

    def set(self, key: str, response: Response, ttl: Optional[int] = None) -> bool:
        self.validate_key(key)
        body = read_body(response)
        metadata = Response(status=response.status,
                            reason=response.reason,
                            headers=dict(response.headers),
                            body=None,
                            version=response.version)
        self.__entries[key] = (metadata, body, int(self.__clock()))
        return True

    def delete(self, key: str) -> bool:
        self.validate_key(key)
        return self.__entries.pop(key, None) is not None

    def clear(self) -> bool:
        self.__entries.clear()
        return True

    def clean(self, max_age: int = DEFAULT_MAX_AGE) -> bool:
        now = self.__clock()
        for key in [key for key, (_, _, written) in self.__entries.items() if now > written + max_age]:
            del self.__entries[key]
        return True

    def has(self, key: str) -> bool:
        self.validate_key(key)
        return key in self.__entries
