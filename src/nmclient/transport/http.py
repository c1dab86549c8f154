"""RESTCONF over HTTP/TLS

One request is one response. send performs the request and queues the
response, receive takes it from the queue. Server-sent event streams
(RFC 8650 subscriptions) are opened with open_stream.
"""
from collections import deque
from dataclasses import dataclass, field
import requests
from loguru import logger

from nmclient.transport.abstract_transport import AbstractTransport
from nmclient.tools.exceptions import ConnectError, TLSError, OperationTimeout


@dataclass
class HttpRequest:
    method: str
    path: str
    headers: dict = field(default_factory=dict)
    body: bytes = None
    params: dict = None
    correlation_id: int = None


@dataclass
class HttpResponse:
    status: int
    headers: dict
    body: bytes
    request: HttpRequest = None

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == 'content-type':
                return value.split(';')[0].strip().lower()
        return ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport(AbstractTransport):
    """http transport based on requests

    Parameters
    ----------
    target : Target
        the device to connect to
    """

    def __init__(self, target):
        super().__init__(target)
        self._session = None
        self._responses = deque()
        self._streams = []

    @property
    def base_url(self) -> str:
        scheme = 'https' if self._target.use_tls else 'http'
        return f'{scheme}://{self._target.host}:{self._target.port}'

    def url(self, path:str) -> str:
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f'{self.base_url}{path}'

    def connect(self, timeout:float=None) -> None:
        target = self._target
        creds = target.credentials
        self._session = requests.Session()
        if creds.username is not None:
            self._session.auth = (creds.username, creds.password or '')
        if not target.use_tls:
            self._session.verify = False
        elif target.verify:
            self._session.verify = target.ca_file if target.ca_file else True
        else:
            self._session.verify = False
        self._connected = True
        logger.bind(extra="http").debug(f'http session to {self.base_url} user={creds.username}')

    def send(self, request:HttpRequest, timeout:float=None) -> None:
        self._check_open()
        timeout = timeout if timeout is not None else self._target.timeout
        response = self._request(request, timeout=timeout)
        self._responses.append(HttpResponse(status=response.status_code,
                                            headers=dict(response.headers),
                                            body=response.content,
                                            request=request))

    def receive(self, timeout:float=None) -> HttpResponse:
        self._check_open()
        if not self._responses:
            raise ConnectError(f'no response pending from {self._target.address}')
        return self._responses.popleft()

    def exchange(self, request:HttpRequest, timeout:float=None) -> HttpResponse:
        self.send(request, timeout=timeout)
        return self.receive()

    def open_stream(self, request:HttpRequest):
        """open a server-sent event stream and return an EventStream"""
        self._check_open()
        headers = dict(request.headers)
        headers.setdefault('Accept', 'text/event-stream')
        stream_request = HttpRequest(method=request.method, path=request.path, headers=headers,
                                     body=request.body, params=request.params,
                                     correlation_id=request.correlation_id)
        response = self._request(stream_request, timeout=(self._target.timeout, self._target.read_timeout),
                                 stream=True)
        if response.status_code >= 300:
            body = response.content
            response.close()
            return _FailedStream(HttpResponse(status=response.status_code, headers=dict(response.headers),
                                              body=body, request=stream_request))
        stream = EventStream(response)
        self._streams.append(stream)
        return stream

    def _request(self, request:HttpRequest, timeout, stream:bool=False):
        url = self.url(request.path)
        logger.bind(extra="http").debug(f'sending {request.method} request to {url}')
        try:
            response = self._session.request(method=request.method,
                                             url=url,
                                             headers=request.headers,
                                             data=request.body,
                                             params=request.params,
                                             timeout=timeout,
                                             stream=stream)
        except requests.exceptions.SSLError as exc:
            raise TLSError(f'TLS verification of {self.base_url} failed', additional_info=str(exc)) from exc
        except requests.exceptions.Timeout as exc:
            raise OperationTimeout(f'{request.method} {url} timed out after {timeout}s') from exc
        except requests.exceptions.RequestException as exc:
            raise ConnectError(f'{request.method} {url} failed', additional_info=str(exc)) from exc
        logger.bind(extra="http").debug(f'got status {response.status_code}')
        return response

    def _release(self) -> None:
        for stream in self._streams:
            stream.cancel()
        self._streams = []
        if self._session is not None:
            self._session.close()


class EventStream:
    """iterate the data of server-sent events (one bytes object per event)"""

    def __init__(self, response):
        self._response = response
        self._cancelled = False

    def __iter__(self):
        data = []
        try:
            for line in self._response.iter_lines():
                if self._cancelled:
                    return
                if not line:
                    if data:
                        yield b'\n'.join(data)
                        data = []
                    continue
                if line.startswith(b':'):
                    continue
                field_name, _, value = line.partition(b':')
                if field_name == b'data':
                    data.append(value[1:] if value.startswith(b' ') else value)
            if data and not self._cancelled:
                yield b'\n'.join(data)
        except (requests.exceptions.RequestException, OSError, AttributeError, ValueError) as exc:
            # closing the response from another thread surfaces as one of these
            if self._cancelled:
                return
            raise ConnectError('event stream failed', additional_info=str(exc)) from exc

    def cancel(self) -> None:
        self._cancelled = True
        self._response.close()


class _FailedStream:
    """a stream that could not be opened; iterating yields the error response once"""

    def __init__(self, response:HttpResponse):
        self.response = response

    def __iter__(self):
        yield self.response

    def cancel(self) -> None:
        pass
