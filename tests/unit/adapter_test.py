from http.client import HTTPMessage
from io import BytesIO
from mockito import mock, unstub, verify, when
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from urllib3.response import HTTPResponse

from filecached.adapter import CachedHTTPAdapter, create
from filecached.model import CacheOptions
from filecached.storage import FileStorage, Storage


def make_requests_response(status: int = 200, body: bytes = b'hello') -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.reason = 'OK'
    response.headers = CaseInsensitiveDict({'Content-Type': 'text/plain; charset=utf-8'})
    response.raw = BytesIO(body)
    return response


class OriginalResponse:
    """
    The `http.client` response that urllib3 wraps; cookies are read from its headers.
    """

    def __init__(self, msg: HTTPMessage) -> None:
        self.msg = msg

    def isclosed(self) -> bool:
        return False


def make_transport_response(request: requests.PreparedRequest, body: bytes = b'hello') -> requests.Response:
    message = HTTPMessage()
    message['Content-Type'] = 'text/plain; charset=utf-8'
    message['Set-Cookie'] = 'sid=abc; Path=/'
    raw = HTTPResponse(body=BytesIO(body),
                       headers=dict(message.items()),
                       status=200,
                       reason='OK',
                       version=11,
                       preload_content=False,
                       original_response=OriginalResponse(message))
    return HTTPAdapter().build_response(request, raw)


class TestCachedHTTPAdapter(TestCase):
    def setUp(self):
        self.__directory = TemporaryDirectory()
        self.directory = Path(self.__directory.name)
        self.adapter = create(self.directory, ttl=60, headers=['Authorization'])
        self.session = requests.Session()
        self.session.mount('http://', self.adapter)

    def tearDown(self):
        unstub()
        self.session.close()
        self.__directory.cleanup()

    def test_create_uses_file_storage(self):
        self.assertIsInstance(self.adapter.storage, FileStorage)
        self.assertEqual(self.directory, self.adapter.storage.directory)
        self.assertEqual(CacheOptions(ttl=60, headers=['Authorization']), self.adapter.middleware.options)

    def test_second_request_is_served_from_cache(self):
        when(self.adapter)._send_upstream(...).thenReturn(make_requests_response())

        first = self.session.get('http://example.com/x')
        second = self.session.get('http://example.com/x')

        verify(self.adapter, times=1)._send_upstream(...)
        self.assertEqual('hello', first.text)
        self.assertEqual('hello', second.text)
        self.assertEqual(200, second.status_code)
        self.assertIn('Cached', second.headers)
        self.assertEqual('text/plain; charset=utf-8', second.headers['content-type'])
        self.assertEqual('http://example.com/x', second.url)
        self.assertEqual(1, len(list(self.directory.iterdir())))

    def test_configured_header_changes_the_key(self):
        when(self.adapter)._send_upstream(...).thenReturn(make_requests_response())

        self.session.get('http://example.com/x', headers={'Authorization': 'A'})
        self.session.get('http://example.com/x', headers={'Authorization': 'B'})
        self.session.get('http://example.com/x', headers={'Authorization': 'A', 'X-Trace': '1'})

        verify(self.adapter, times=2)._send_upstream(...)

    def test_error_responses_are_not_cached(self):
        when(self.adapter)._send_upstream(...).thenReturn(make_requests_response(status=500))

        response = self.session.get('http://example.com/x')
        self.session.get('http://example.com/x')

        self.assertEqual(500, response.status_code)
        verify(self.adapter, times=2)._send_upstream(...)
        self.assertEqual([], list(self.directory.iterdir()))

    def test_transport_errors_propagate(self):
        when(self.adapter)._send_upstream(...).thenRaise(requests.ConnectionError('unreachable'))

        with self.assertRaises(requests.ConnectionError):
            self.session.get('http://example.com/x')

    def test_per_call_ttl(self):
        when(self.adapter)._send_upstream(...).thenReturn(make_requests_response())
        request = requests.Request('GET', 'http://example.com/x').prepare()

        self.adapter.send(request, ttl=0)
        self.assertEqual([], list(self.directory.iterdir()))

        self.adapter.send(request, ttl=300)
        response = self.adapter.send(request, ttl=300)

        verify(self.adapter, times=2)._send_upstream(...)
        self.assertEqual(b'hello', response.content)
        self.assertIs(request, response.request)

    def test_streamed_request_body_is_not_cached(self):
        when(self.adapter)._send_upstream(...).thenReturn(make_requests_response())
        request = requests.Request('POST', 'http://example.com/x', data=iter([b'chunk'])).prepare()

        response = self.adapter.send(request)

        self.assertEqual(b'hello', response.content)
        self.assertEqual([], list(self.directory.iterdir()))

    def test_close_closes_the_storage(self):
        storage = mock(Storage)
        when(storage).close().thenReturn(None)
        adapter = CachedHTTPAdapter(storage)

        adapter.close()

        verify(storage, times=1).close()

    def uncached_adapter(self) -> CachedHTTPAdapter:
        adapter = create(self.directory, ttl=0)
        self.session.mount('http://', adapter)
        when(adapter)._send_upstream(...).thenAnswer(lambda request, **kw: make_transport_response(request))
        return adapter

    def test_uncached_response_keeps_cookies(self):
        self.uncached_adapter()

        response = self.session.get('http://example.com/x')

        self.assertEqual({'sid': 'abc'}, response.cookies.get_dict())
        self.assertEqual('abc', self.session.cookies.get('sid'))
        self.assertIsInstance(response.raw, HTTPResponse)
        self.assertEqual(11, response.raw.version)
        self.assertEqual('hello', response.text)

    def test_uncached_response_is_not_buffered_when_streaming(self):
        self.uncached_adapter()

        response = self.session.get('http://example.com/x', stream=True)

        self.assertEqual(b'hello', response.raw.read())

    def test_stored_response_keeps_cookies(self):
        when(self.adapter)._send_upstream(...).thenAnswer(lambda request, **kw: make_transport_response(request))

        first = self.session.get('http://example.com/x')
        second = self.session.get('http://example.com/x')

        verify(self.adapter, times=1)._send_upstream(...)
        self.assertEqual({'sid': 'abc'}, first.cookies.get_dict())
        self.assertEqual('abc', self.session.cookies.get('sid'))
        self.assertEqual('hello', second.text)
        self.assertIn('Cached', second.headers)
