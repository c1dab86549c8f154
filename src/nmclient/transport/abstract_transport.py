import threading
from abc import ABC, abstractmethod
from loguru import logger

from nmclient.tools.exceptions import ClosedError, UnsupportedError


class AbstractTransport(ABC):
    """abstract class of a transport session

    A transport owns exactly one physical connection to one target.
    Transport errors are never retried here; retry policy belongs to the caller.

    Attributes
    ----------
    streaming : bool
        True if replies arrive on a shared byte stream that needs a reader
        loop (netconf over ssh). False for request/response transports.
    clean_abandon : bool
        True if a request that timed out is guaranteed to be abandoned by the
        server (http, grpc). False if a late reply may still arrive.

    Parameters
    ----------
    target : Target
        the device to connect to
    """
    streaming = False
    clean_abandon = True

    def __init__(self, target):
        self._target = target
        self._closed = False
        self._connected = False
        self._close_lock = threading.Lock()

    @property
    def target(self):
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return self._connected and not self._closed

    @abstractmethod
    def connect(self, timeout:float=None) -> None:
        """open the connection and authenticate"""

    @abstractmethod
    def send(self, message, timeout:float=None) -> None:
        """send one wire message"""

    @abstractmethod
    def receive(self, timeout:float=None):
        """return the next wire message"""

    def abort(self) -> None:
        """stop waiting for the exchange in flight, where the transport can

        called from another thread when the caller gives up on a request;
        transports that cannot interrupt a request let it run to its timeout.
        """

    def open_stream(self, message):
        """start a long lived stream and return an iterable source with cancel()"""
        raise UnsupportedError(f'{type(self).__name__} does not support streams')

    def close(self) -> None:
        """close the connection; safe to call more than once"""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        logger.bind(extra="transport").debug(f'closing connection to {self._target.address}')
        self._release()

    @abstractmethod
    def _release(self) -> None:
        """release sockets, channels and threads (called exactly once)"""

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedError(f'transport to {self._target.address} is closed')
        if not self._connected:
            raise ClosedError(f'transport to {self._target.address} is not connected')
