import itertools
import threading
from enum import Enum
from loguru import logger

from nmclient.context import Context
from nmclient.model.operation import ControlOperation, OperationKind
from nmclient.session.dispatcher import Dispatcher, StreamingDispatcher
from nmclient.session.subscription import Subscription
from nmclient.tools.exceptions import NmclientError, ClosedError, UnsupportedError


class SessionState(Enum):
    OPEN = "open"
    DEGRADED = "degraded"
    CLOSED = "closed"


class Session:
    """a negotiated connection to one target

    A session binds the target, the transport, the codec and the negotiated
    capabilities. It is owned by exactly one Client and never shared.

    Parameters
    ----------
    target : Target
        the device
    transport : AbstractTransport
        the connected transport
    codec : AbstractCodec
        the codec created during negotiation
    capabilities : Capabilities
        the negotiated feature set (fixed for the lifetime of the session)
    """

    def __init__(self, target, transport, codec, capabilities):
        self.target = target
        self.transport = transport
        self.codec = codec
        self.capabilities = capabilities

        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()
        self._state = SessionState.OPEN
        self._state_lock = threading.Lock()
        self._error = None
        self._subscriptions = set()
        self._subscriptions_lock = threading.Lock()

        if transport.streaming:
            self.dispatcher = StreamingDispatcher(self)
        else:
            self.dispatcher = Dispatcher(self)

    def __repr__(self):
        return f'Session({self.target.address}, {self.target.protocol.value}, {self._state.value})'

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == SessionState.CLOSED

    @property
    def error(self):
        """the error that closed the session (None if closed by the caller)"""
        return self._error

    def start(self) -> None:
        self.dispatcher.start()

    def next_correlation_id(self) -> int:
        with self._counter_lock:
            return next(self._counter)

    def check_open(self) -> None:
        if self._state == SessionState.CLOSED:
            raise ClosedError(f'session to {self.target.address} is closed',
                              additional_info=str(self._error) if self._error else None)

    def mark_degraded(self, reason:str) -> None:
        with self._state_lock:
            if self._state != SessionState.OPEN:
                return
            self._state = SessionState.DEGRADED
        logger.bind(extra="session").warning(f'session to {self.target.address} degraded: {reason}')

    def execute(self, operation, ctx:Context):
        """run a simple operation and return its Result"""
        self.check_open()
        return self.dispatcher.execute(operation, ctx)

    # subscriptions

    def subscribe(self, operation, ctx:Context, buffer_size:int=None) -> Subscription:
        """start a subscription and return its Subscription (UpdateStream)"""
        self.check_open()
        if not self.capabilities.supports_subscribe:
            raise UnsupportedError(f'{self.target.protocol.value} session does not support subscriptions')

        if self.transport.streaming:
            subscription = Subscription(self.codec, operation.path, ctx=ctx, buffer_size=buffer_size,
                                        on_close=self._forget)

            def register(result):
                # runs in the reader thread before the next message is read
                subscription.subscription_id = result.metadata['subscription_id']
                self.dispatcher.register_stream(subscription.subscription_id, subscription.push)

            self.dispatcher.execute(operation, ctx, on_reply=register)
        elif self.codec.establishes_subscriptions:
            result = self.dispatcher.execute(operation, ctx)
            try:
                source = self.transport.open_stream(self.codec.stream_request(result.metadata['uri']))
            except NmclientError:
                self._unsubscribe(result.metadata['subscription_id'])
                raise
            subscription = Subscription(self.codec, operation.path, ctx=ctx, buffer_size=buffer_size,
                                        source=source, on_close=self._forget,
                                        subscription_id=result.metadata['subscription_id'])
        else:
            message = self.codec.encode_request(operation, self.capabilities, self.next_correlation_id())
            source = self.transport.open_stream(message)
            subscription = Subscription(self.codec, operation.path, ctx=ctx, buffer_size=buffer_size,
                                        source=source, on_close=self._forget)

        with self._subscriptions_lock:
            self._subscriptions.add(subscription)
        subscription.start()
        logger.bind(extra="session").info(f'subscribed to {operation.path} on {self.target.address} '
                                          f'id={subscription.subscription_id}')
        return subscription

    def _forget(self, subscription, cancelled:bool) -> None:
        with self._subscriptions_lock:
            self._subscriptions.discard(subscription)
        if subscription.subscription_id is None:
            return
        self.dispatcher.unregister_stream(subscription.subscription_id)
        if cancelled and self.codec.establishes_subscriptions:
            self._unsubscribe(subscription.subscription_id)

    def _unsubscribe(self, subscription_id) -> None:
        """send delete-subscription; failures are logged only"""
        if self.closed:
            return
        operation = ControlOperation(OperationKind.UNSUBSCRIBE, subscription_id=subscription_id)
        try:
            self.dispatcher.execute(operation, Context(timeout=self.target.timeout))
        except NmclientError as exc:
            logger.bind(extra="session").warning(f'delete-subscription {subscription_id} failed: {exc}')

    # teardown

    def close(self, error=None) -> None:
        """close the session; safe to call more than once

        subscriptions end with error (or ClosedError) and pending callers
        receive error.
        """
        with self._state_lock:
            if self._state == SessionState.CLOSED:
                return
            self._state = SessionState.CLOSED
            self._error = error

        with self._subscriptions_lock:
            subscriptions, self._subscriptions = list(self._subscriptions), set()
        for subscription in subscriptions:
            subscription.close(error or ClosedError(f'session to {self.target.address} closed'))

        self.dispatcher.stop(error)
        self.transport.close()
        self.dispatcher.join()
        logger.bind(extra="session").debug(f'session to {self.target.address} closed')
