"""cancellation and deadlines

Every blocking call of the client accepts a Context. A Context is cancelled
explicitly (cancel) or implicitly when its deadline has passed.

Cancelling a get or set that is already on the wire does not undo it on
the device: the change may have been applied anyway. Callers that retry
must make their changes idempotent.
"""
import threading
import time


class Context:
    """cancellation signal plus optional deadline

    Parameters
    ----------
    timeout : float, optional
        seconds until the deadline; None means no deadline
    """

    def __init__(self, timeout:float=None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    @classmethod
    def with_timeout(cls, timeout:float) -> "Context":
        return cls(timeout=timeout)

    @classmethod
    def background(cls) -> "Context":
        return cls()

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def cancel(self) -> None:
        self._event.set()

    def remaining(self, cap:float=None) -> float | None:
        """seconds left until the deadline (never negative); cap limits the value"""
        if self._deadline is None:
            return cap
        left = max(0.0, self._deadline - time.monotonic())
        return min(left, cap) if cap is not None else left

    def wait(self, timeout:float=None) -> bool:
        """block until cancelled, expired or timeout; return True if the context is done"""
        limit = self.remaining(timeout)
        self._event.wait(limit)
        return self.done
