class CacheError(Exception):
    """
    Base class for all errors raised by the cache.
    """


class InvalidArgument(CacheError, ValueError):
    """
    Raised when a bulk operation is given something other than a collection.
    """


class InvalidKey(InvalidArgument):
    """
    Raised when a key is not a legal cache key.
    """

    def __init__(self, key, message: str = 'The key must be a string'):
        super().__init__('{}: {!r}'.format(message, key))
        self.__key = key

    @property
    def key(self):
        return self.__key
