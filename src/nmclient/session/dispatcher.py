"""operation dispatcher

A session runs one simple operation (get, set, rpc) at a time. The lock
around the in-flight slot is the only explicit locking; codecs, paths and
capabilities are immutable.

Idle -> AwaitingResponse -> Idle on the matching reply
AwaitingResponse -> Idle with OperationTimeout (the session is degraded if
                    the transport cannot guarantee that the server
                    abandoned the request)
any -> Closed on a transport error
"""
import threading
import time
from loguru import logger

from nmclient.model.operation import OperationKind
from nmclient.tools.exceptions import (NmclientError, ClosedError, DecodeError, OperationCancelled,
                                       OperationTimeout, is_transport_error)

# how often a waiting caller looks at its context
POLL_INTERVAL = 0.05


def acquire(lock, ctx) -> None:
    """acquire lock unless ctx is cancelled or expires first"""
    while not lock.acquire(timeout=ctx.remaining(cap=POLL_INTERVAL)):
        if ctx.cancelled:
            raise OperationCancelled('cancelled while waiting for the session')
        if ctx.expired:
            raise OperationTimeout('deadline passed while waiting for the session')


def encode(session, operation, correlation_id):
    """encode operation for the wire; errors are marked as never sent"""
    try:
        return session.codec.encode_request(operation, session.capabilities, correlation_id)
    except NmclientError as exc:
        exc.metadata.setdefault('sent', False)
        raise


class Dispatcher:
    """dispatcher of request/response transports (http, grpc, cli)

    the exchange runs in a worker thread that owns the in-flight slot until
    the transport returns; the caller waits on its context meanwhile. A
    cancelled or expired call returns at once and asks the transport to
    abort the exchange. The transport timeout is the remaining time of the
    context capped by the timeout of the target.

    Parameters
    ----------
    session : Session
        the session this dispatcher belongs to
    """

    def __init__(self, session):
        self._session = session
        self._slot = threading.Lock()

    def start(self) -> None:
        pass

    def stop(self, error=None) -> None:
        pass

    def join(self) -> None:
        pass

    def register_stream(self, key, deliver) -> None:
        pass

    def unregister_stream(self, key) -> None:
        pass

    def _timeout(self, ctx) -> float:
        return ctx.remaining(cap=self._session.target.timeout)

    def execute(self, operation, ctx, on_reply=None):
        session = self._session
        acquire(self._slot, ctx)
        try:
            session.check_open()
            if ctx.cancelled:
                raise OperationCancelled(f'{operation.kind.value} cancelled before it was sent',
                                         metadata={'sent': False})
            correlation_id = session.next_correlation_id()
            message = encode(session, operation, correlation_id)
            timeout = self._timeout(ctx)
            pending = _Pending(correlation_id, operation, on_reply)
            worker = threading.Thread(target=self._exchange, args=(message, timeout, pending),
                                      name=f'nmclient-exchange-{session.target.address}', daemon=True)
            logger.bind(extra="dispatcher").debug(f'{operation.kind.value} id={correlation_id} timeout={timeout}')
            worker.start()
        except Exception:
            self._slot.release()
            raise

        # the worker releases the slot
        while not pending.done.wait(POLL_INTERVAL):
            if ctx.cancelled:
                self._give_up(f'{operation.kind.value} id={correlation_id} cancelled')
                raise OperationCancelled(f'{operation.kind.value} cancelled; the request may have been applied')
            if ctx.expired:
                self._give_up(f'{operation.kind.value} id={correlation_id} passed its deadline')
                raise OperationTimeout(f'no reply to {operation.kind.value} id={correlation_id} before the deadline')

        if pending.error is not None:
            raise pending.error
        reply = pending.result
        reply_id = session.codec.correlation_id(reply)
        if reply_id is not None and reply_id != correlation_id:
            raise DecodeError(f'reply id {reply_id} does not match request id {correlation_id}')
        result, _ = session.codec.decode_response(reply, operation)
        if on_reply is not None:
            on_reply(result)
        if ctx.cancelled:
            raise OperationCancelled(f'{operation.kind.value} cancelled; the request may have been applied')
        return result

    def _exchange(self, message, timeout, pending) -> None:
        transport = self._session.transport
        error = None
        try:
            transport.send(message, timeout=timeout)
            pending.result = transport.receive(timeout=timeout)
        except Exception as exc:
            error = exc
        finally:
            self._slot.release()
        if isinstance(error, NmclientError):
            self._transport_failed(error)
        pending.error = error
        pending.done.set()

    def _give_up(self, reason:str) -> None:
        session = self._session
        session.transport.abort()
        if not session.transport.clean_abandon:
            session.mark_degraded(reason)

    def _transport_failed(self, exc) -> None:
        session = self._session
        if is_transport_error(exc):
            logger.bind(extra="dispatcher").error(f'transport to {session.target.address} failed: {exc}')
            session.close(error=exc)
        elif isinstance(exc, OperationTimeout):
            if session.transport.closed:
                session.close(error=exc)
            elif not session.transport.clean_abandon:
                session.mark_degraded(str(exc))


class _Pending:
    """the request in the in-flight slot"""

    def __init__(self, correlation_id, operation, on_reply=None):
        self.correlation_id = correlation_id
        self.operation = operation
        self.on_reply = on_reply
        self.done = threading.Event()
        self.result = None
        self.error = None


class StreamingDispatcher(Dispatcher):
    """dispatcher of a shared byte stream (netconf over ssh)

    A reader thread owns the stream. Replies are matched to the request in
    the in-flight slot by message-id; a reply with another id (a late reply
    of an abandoned request) is discarded. Notifications are routed by
    subscription id to the registered deliver callbacks.
    """

    def __init__(self, session):
        super().__init__(session)
        self._pending = None
        self._pending_lock = threading.Lock()
        self._streams = {}
        self._streams_lock = threading.Lock()
        self._stopped = threading.Event()
        self._reader = None

    def start(self) -> None:
        self._reader = threading.Thread(target=self._read_loop,
                                        name=f'nmclient-reader-{self._session.target.address}',
                                        daemon=True)
        self._reader.start()

    def stop(self, error=None) -> None:
        self._stopped.set()
        with self._pending_lock:
            pending, self._pending = self._pending, None
        if pending is not None:
            pending.error = error or ClosedError('session closed while waiting for a reply')
            pending.done.set()

    def join(self) -> None:
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=self._session.target.timeout)

    def register_stream(self, key, deliver) -> None:
        with self._streams_lock:
            self._streams[str(key)] = deliver

    def unregister_stream(self, key) -> None:
        with self._streams_lock:
            self._streams.pop(str(key), None)

    def execute(self, operation, ctx, on_reply=None):
        session = self._session
        acquire(self._slot, ctx)
        try:
            session.check_open()
            if ctx.cancelled:
                raise OperationCancelled(f'{operation.kind.value} cancelled before it was sent',
                                         metadata={'sent': False})
            correlation_id = session.next_correlation_id()
            message = encode(session, operation, correlation_id)
            pending = _Pending(correlation_id, operation, on_reply)
            with self._pending_lock:
                self._pending = pending
            timeout = self._timeout(ctx)
            deadline = time.monotonic() + timeout if timeout is not None else None
            logger.bind(extra="dispatcher").debug(f'{operation.kind.value} message-id={correlation_id}')
            try:
                session.transport.send(message, timeout=timeout)
            except NmclientError as exc:
                self._abandon(pending)
                self._transport_failed(exc)
                raise

            while not pending.done.wait(POLL_INTERVAL):
                if ctx.cancelled:
                    self._abandon(pending)
                    raise OperationCancelled(f'{operation.kind.value} cancelled; the request may have been applied')
                if deadline is not None and time.monotonic() >= deadline:
                    self._abandon(pending)
                    exc = OperationTimeout(f'no reply to message-id {correlation_id} after {timeout:.1f}s')
                    self._transport_failed(exc)
                    raise exc

            if pending.error is not None:
                raise pending.error
            return pending.result
        finally:
            self._slot.release()

    def _abandon(self, pending) -> None:
        with self._pending_lock:
            if self._pending is pending:
                self._pending = None

    def _read_loop(self) -> None:
        session = self._session
        transport, codec = session.transport, session.codec
        while not self._stopped.is_set():
            try:
                message = transport.receive()
            except NmclientError as exc:
                if self._stopped.is_set():
                    return
                logger.bind(extra="dispatcher").error(f'reader of {session.target.address} stopped: {exc}')
                session.close(error=exc)
                return

            try:
                if codec.is_stream_update(message):
                    self._route(message)
                    continue
                correlation_id = codec.correlation_id(message)
            except DecodeError as exc:
                logger.bind(extra="dispatcher").warning(f'discarding undecodable message: {exc}')
                continue

            with self._pending_lock:
                pending = self._pending
                if pending is None or pending.correlation_id != correlation_id:
                    logger.bind(extra="dispatcher").warning(f'discarding reply with message-id {correlation_id}')
                    continue
                self._pending = None

            try:
                pending.result, _ = codec.decode_response(message, pending.operation)
                if pending.on_reply is not None:
                    pending.on_reply(pending.result)
            except NmclientError as exc:
                pending.error = exc
            pending.done.set()
            if pending.operation.kind == OperationKind.CLOSE_SESSION:
                # the server closes the connection after close-session
                self._stopped.set()

    def _route(self, message) -> None:
        key = self._session.codec.stream_key(message)
        with self._streams_lock:
            deliver = self._streams.get(str(key)) if key is not None else None
        if deliver is None:
            logger.bind(extra="dispatcher").debug(f'no subscription {key}; notification discarded')
            return
        deliver(message)
