from .adapter import CachedHTTPAdapter, create
from .errors import CacheError, InvalidArgument, InvalidKey
from .key import derive_key
from .middleware import CacheMiddleware
from .model import CacheOptions, Request, Response
from .storage import FileStorage, MemoryStorage, Storage
