"""subscription manager

A Subscription is the caller visible UpdateStream of one streaming
operation. Updates arrive either from a source (gnmi Subscribe rpc,
restconf event stream) that is read by the subscription's own reader
thread, or are pushed by the session's reader (netconf notifications).

Delivery uses a bounded queue. If the caller does not drain it, the oldest
update is dropped, the drop is counted and the next delivered update
carries metadata['overflow'] with the number of updates dropped before it.

Exactly one terminal state is reached: COMPLETED (the server ended the
stream), FAILED (error) or CANCELLED. Nothing is delivered afterwards.
"""
import queue
import threading
import time
from enum import Enum
from loguru import logger

from nmclient.tools.exceptions import (NmclientError, ConnectError, DecodeError, OperationTimeout,
                                       SubscriptionOverflow)

DEFAULT_BUFFER_SIZE = 1000
POLL_INTERVAL = 0.05


class StreamState(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Subscription:
    """cancellable stream of Results

    Parameters
    ----------
    codec : AbstractCodec
        decodes the updates
    path : Path
        the subscribed path (used for updates that carry no path)
    ctx : Context, optional
        cancelling the context (or its deadline) cancels the subscription
    buffer_size : int, optional
        number of undelivered updates kept before the oldest is dropped
    source : iterable, optional
        source of wire messages with a cancel() method; None if messages are pushed
    on_close : callable, optional
        called once as on_close(subscription, cancelled) after a terminal state was reached
    subscription_id : str, optional
        id assigned by the server
    """

    def __init__(self, codec, path, ctx=None, buffer_size:int=None, source=None, on_close=None,
                 subscription_id:str=None):
        self._codec = codec
        self._path = path
        self._ctx = ctx
        self._source = source
        self._on_close = on_close
        self.subscription_id = subscription_id

        self._queue = queue.Queue(maxsize=buffer_size or DEFAULT_BUFFER_SIZE)
        self._lock = threading.Lock()
        self._state = StreamState.ACTIVE
        self._error = None
        self._done = threading.Event()
        self._released = False
        self._dropped = 0
        self._held = None
        self._reader = None
        self._watcher = None

    def __repr__(self):
        return f'Subscription(path={self._path}, id={self.subscription_id}, state={self._state.value})'

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == StreamState.ACTIVE

    @property
    def error(self):
        return self._error

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def path(self):
        return self._path

    def start(self) -> None:
        if self._source is not None:
            self._reader = threading.Thread(target=self._read_loop, name=f'nmclient-subscription-{self._path}',
                                            daemon=True)
            self._reader.start()
        if self._ctx is not None:
            self._watcher = threading.Thread(target=self._watch, name=f'nmclient-watcher-{self._path}',
                                             daemon=True)
            self._watcher.start()

    # producer side

    def push(self, message) -> None:
        """handle one wire message (used by the session reader)"""
        if not self._handle(message):
            self._release(notify=False)

    def _read_loop(self) -> None:
        try:
            for message in self._source:
                if not self._handle(message) or self._done.is_set():
                    break
            else:
                self._finish(StreamState.COMPLETED)
        except NmclientError as exc:
            self._finish(StreamState.FAILED, exc)
        except Exception as exc:
            error = ConnectError('subscription stream failed', additional_info=str(exc))
            error.__cause__ = exc
            self._finish(StreamState.FAILED, error)
        self._release(notify=False)

    def _handle(self, message) -> bool:
        """decode and deliver one message; return False once the stream ended"""
        if self._done.is_set():
            return False
        try:
            if self._codec.is_stream_end(message):
                logger.bind(extra="subscription").debug(f'server ended subscription {self.subscription_id}')
                self._finish(StreamState.COMPLETED)
                return False
            result = self._codec.decode_stream_update(message)
        except DecodeError as exc:
            logger.bind(extra="subscription").warning(f'skipping undecodable update: {exc}')
            return True
        except NmclientError as exc:
            self._finish(StreamState.FAILED, exc)
            return False
        if result is None:
            return True
        if result.path is None:
            result.path = self._path
        self._deliver(result)
        return True

    def _deliver(self, result) -> None:
        with self._lock:
            if self._state != StreamState.ACTIVE:
                return
            dropped = 0
            while True:
                if dropped:
                    result.metadata['overflow'] = dropped
                try:
                    self._queue.put_nowait(result)
                    break
                except queue.Full:
                    try:
                        self._queue.get_nowait()
                        dropped += 1
                    except queue.Empty:
                        pass
            if dropped:
                self._dropped += dropped
                logger.bind(extra="subscription").warning(f'subscription buffer full; dropped {dropped} update(s)')

    def _watch(self) -> None:
        while not self._done.is_set():
            if self._ctx.wait(POLL_INTERVAL):
                logger.bind(extra="subscription").debug('context done; cancelling subscription')
                self.cancel()
                return

    def _finish(self, state:StreamState, error=None) -> bool:
        with self._lock:
            if self._state != StreamState.ACTIVE:
                return False
            self._state = state
            self._error = error
            if state == StreamState.CANCELLED:
                while True:
                    try:
                        self._queue.get_nowait()
                    except queue.Empty:
                        break
            self._done.set()
        logger.bind(extra="subscription").debug(f'subscription {self.subscription_id} {state.value}')
        return True

    def _release(self, notify:bool) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
        if self._source is not None:
            self._source.cancel()
        if self._on_close is not None:
            self._on_close(self, notify)

    # consumer side

    def cancel(self) -> None:
        """cancel the subscription; no update is delivered after cancel returned"""
        self._finish(StreamState.CANCELLED)
        self._release(notify=True)
        current = threading.current_thread()
        for thread in (self._reader, self._watcher):
            if thread is not None and thread is not current:
                thread.join(timeout=5)

    def close(self, error=None) -> None:
        """end the subscription because its session is gone"""
        if error is None:
            self.cancel()
            return
        self._finish(StreamState.FAILED, error)
        self._release(notify=False)

    def get(self, timeout:float=None, raise_on_overflow:bool=False):
        """return the next update or None once the stream ended normally or was cancelled

        Parameters
        ----------
        timeout : float, optional
            seconds to wait; OperationTimeout is raised after
        raise_on_overflow : bool, optional
            raise SubscriptionOverflow if updates were dropped before the next one;
            the update itself is returned by the following call

        Raises
        ------
        NmclientError
            the error that ended the stream
        """
        if self._held is not None:
            result, self._held = self._held, None
            return result
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            try:
                result = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                if self._done.is_set() and self._queue.empty():
                    if self._state == StreamState.FAILED:
                        raise self._error
                    return None
                if deadline is not None and time.monotonic() >= deadline:
                    raise OperationTimeout(f'no update within {timeout}s')
                continue
            if self._state == StreamState.CANCELLED:
                return None
            if raise_on_overflow and result.metadata.get('overflow'):
                dropped = result.metadata.pop('overflow')
                self._held = result
                raise SubscriptionOverflow(f'{dropped} update(s) dropped', dropped=dropped)
            return result

    def __iter__(self):
        return self

    def __next__(self):
        result = self.get()
        if result is None:
            raise StopIteration
        return result

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cancel()
