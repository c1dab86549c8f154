"""gNMI over gRPC

Unary RPCs (Capabilities, Get, Set) follow the send/receive pattern: send
performs the call and queues the reply. Subscribe is a bidirectional
stream opened with open_stream. Message boundaries are native to gRPC.

Status codes that describe the connection (unavailable, unauthenticated,
deadline exceeded) are raised as transport errors; every other status is
handed to the codec as a GrpcReply so that it is classified as a server
rejection.
"""
import re
import threading
from collections import deque
from dataclasses import dataclass
import grpc
from loguru import logger
from pygnmi.spec.v080 import gnmi_pb2
from pygnmi.spec.v080.gnmi_pb2_grpc import gNMIStub

from nmclient.transport.abstract_transport import AbstractTransport
from nmclient.tools.exceptions import ConnectError, TLSError, OperationCancelled, OperationTimeout

_TRANSPORT_CODES = (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.UNAUTHENTICATED)
# grpc reports handshake failures as UNAVAILABLE with the ssl error in the details
_TLS_DETAILS = re.compile(r"ssl|tls|handshake|certificate", re.IGNORECASE)


@dataclass
class GrpcCall:
    method: str
    request: object
    correlation_id: int = None


@dataclass
class GrpcReply:
    call: GrpcCall
    message: object = None
    code: str = None
    details: str = None

    @property
    def ok(self) -> bool:
        return self.code is None


def _raise_for_transport(exc, address:str, context:str) -> None:
    code = exc.code() if hasattr(exc, 'code') else None
    details = exc.details() if hasattr(exc, 'details') else str(exc)
    if code == grpc.StatusCode.DEADLINE_EXCEEDED:
        raise OperationTimeout(f'{context} on {address} exceeded its deadline', additional_info=details) from exc
    if code == grpc.StatusCode.UNAVAILABLE and _TLS_DETAILS.search(details or ''):
        raise TLSError(f'TLS handshake with {address} failed', additional_info=details) from exc
    if code in _TRANSPORT_CODES:
        raise ConnectError(f'{context} on {address} failed ({code.name})', additional_info=details) from exc


class GrpcTransport(AbstractTransport):
    """grpc channel with the gNMI stub (generated code shipped with pygnmi)

    Parameters
    ----------
    target : Target
        the device to connect to
    """

    def __init__(self, target):
        super().__init__(target)
        self._channel = None
        self._stub = None
        self._replies = deque()
        self._inflight = None
        self._streams = []
        self._streams_lock = threading.Lock()

    @property
    def metadata(self) -> list:
        creds = self._target.credentials
        if creds.username is None:
            return []
        return [('username', creds.username), ('password', creds.password or '')]

    def connect(self, timeout:float=None) -> None:
        timeout = timeout if timeout is not None else self._target.timeout
        target = self._target
        options = []
        if target.tls_server_name:
            options.append(('grpc.ssl_target_name_override', target.tls_server_name))

        if target.use_tls:
            root_certificates = None
            if target.ca_file:
                with open(target.ca_file, 'rb') as f:
                    root_certificates = f.read()
            credentials = grpc.ssl_channel_credentials(root_certificates=root_certificates)
            channel = grpc.secure_channel(target.address, credentials, options=options)
        else:
            channel = grpc.insecure_channel(target.address, options=options)

        logger.bind(extra="grpc").debug(f'waiting for grpc channel to {target.address}')
        try:
            grpc.channel_ready_future(channel).result(timeout=timeout)
        except grpc.FutureTimeoutError as exc:
            try:
                if target.use_tls:
                    self._check_handshake(channel, timeout)
            finally:
                channel.close()
            raise OperationTimeout(f'grpc channel to {target.address} not ready after {timeout}s') from exc

        self._channel = channel
        self._stub = gNMIStub(channel)
        self._connected = True

    def _check_handshake(self, channel, timeout:float) -> None:
        """raise TLSError if a call on channel fails in the TLS handshake"""
        try:
            gNMIStub(channel).Capabilities(gnmi_pb2.CapabilityRequest(), metadata=self.metadata, timeout=timeout)
        except grpc.RpcError as exc:
            details = exc.details() or ''
            if exc.code() == grpc.StatusCode.UNAVAILABLE and _TLS_DETAILS.search(details):
                raise TLSError(f'TLS handshake with {self._target.address} failed',
                               additional_info=details) from exc

    def send(self, call:GrpcCall, timeout:float=None) -> None:
        self._check_open()
        timeout = timeout if timeout is not None else self._target.timeout
        method = getattr(self._stub, call.method)
        logger.bind(extra="grpc").debug(f'calling {call.method} on {self._target.address}')
        future = method.future(call.request, metadata=self.metadata, timeout=timeout)
        self._inflight = future
        try:
            message = future.result()
        except grpc.FutureCancelledError as exc:
            raise OperationCancelled(f'{call.method} on {self._target.address} was cancelled') from exc
        except grpc.RpcError as exc:
            if exc.code() == grpc.StatusCode.CANCELLED:
                raise OperationCancelled(f'{call.method} on {self._target.address} was cancelled') from exc
            _raise_for_transport(exc, self._target.address, call.method)
            self._replies.append(GrpcReply(call=call, code=exc.code().name, details=exc.details()))
            return
        finally:
            self._inflight = None
        self._replies.append(GrpcReply(call=call, message=message))

    def abort(self) -> None:
        """cancel the unary call in flight"""
        future = self._inflight
        if future is not None:
            future.cancel()

    def receive(self, timeout:float=None) -> GrpcReply:
        self._check_open()
        if not self._replies:
            raise ConnectError(f'no reply pending from {self._target.address}')
        return self._replies.popleft()

    def open_stream(self, call:GrpcCall):
        """start the Subscribe rpc and return a GrpcStream"""
        self._check_open()
        stream = GrpcStream(self._stub, call, self.metadata, self._target.address)
        with self._streams_lock:
            self._streams.append(stream)
        return stream

    def _release(self) -> None:
        with self._streams_lock:
            streams, self._streams = self._streams, []
        for stream in streams:
            stream.cancel()
        if self._channel is not None:
            self._channel.close()


class GrpcStream:
    """one Subscribe rpc

    the request side stays open until the stream is cancelled, otherwise
    some targets end STREAM subscriptions when the client half-closes.
    """

    def __init__(self, stub, call:GrpcCall, metadata:list, address:str):
        self._done = threading.Event()
        self._address = address
        self._rpc = stub.Subscribe(self._requests(call.request), metadata=metadata)

    def _requests(self, request):
        yield request
        self._done.wait()

    def __iter__(self):
        try:
            for response in self._rpc:
                yield response
        except grpc.RpcError as exc:
            if self._done.is_set() or exc.code() == grpc.StatusCode.CANCELLED:
                return
            _raise_for_transport(exc, self._address, 'Subscribe')
            yield GrpcReply(call=None, code=exc.code().name, details=exc.details())
        finally:
            self._done.set()

    def cancel(self) -> None:
        self._done.set()
        self._rpc.cancel()
