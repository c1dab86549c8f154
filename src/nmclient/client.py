"""unified client

One Client owns one session to one target, whatever the protocol:

>>> target = Target(host='192.0.2.1', protocol=Protocol.NETCONF,
...                 credentials=Credentials(username='admin', password='secret'),
...                 namespaces={'interfaces': 'urn:ietf:params:xml:ns:yang:ietf-interfaces'})
>>> with Client(target) as client:
...     result = client.get('/interfaces/interface[name=eth0]', Scope.CONFIG_ONLY)
...     client.set('/interfaces/interface[name=eth0]/description', '<description>uplink</description>',
...                Encoding.XML, MergePolicy.MERGE)
...     client.commit()

The session is negotiated on first use (or by open). Set never commits a
candidate datastore; call commit. Set has no default merge policy and no
default encoding.

Set failures report in the error metadata whether the change is known to be
not applied ('none', protocols with transactional edits) or 'unknown'.
A Set is never retried by the client.
"""
import threading
import time
from loguru import logger

from nmclient.context import Context
from nmclient.model.capabilities import Datastore
from nmclient.model.event import OperationEvent
from nmclient.model.operation import (GetOperation, SetOperation, SubscribeOperation, ControlOperation,
                                      OperationKind, Edit)
from nmclient.model.target import Protocol
from nmclient.session.manager import SessionManager
from nmclient.tools.exceptions import NmclientError, ClosedError, ServerRejectedError, UnsupportedError


class Client:
    """the protocol agnostic client facade

    Parameters
    ----------
    target : Target
        the device
    transport : AbstractTransport, optional
        transport to use instead of the one derived from the protocol
    telemetry : callable, optional
        called with an OperationEvent after every operation
    manager : SessionManager, optional
        negotiates the session
    """

    def __init__(self, target, transport=None, telemetry=None, manager:SessionManager=None):
        self._target = target
        self._transport = transport
        self._telemetry = telemetry
        self._manager = manager or SessionManager()
        self._session = None
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, target, transport=None, telemetry=None, ctx:Context=None) -> "Client":
        """create a client and negotiate its session"""
        client = cls(target, transport=transport, telemetry=telemetry)
        client.open(ctx=ctx)
        return client

    def __repr__(self):
        return f'Client({self._target.address}, {self._target.protocol.value})'

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    @property
    def target(self):
        return self._target

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session(self):
        return self._session

    @property
    def capabilities(self):
        """the negotiated Capabilities (negotiates the session if needed)"""
        return self._ensure_session(Context()).capabilities

    def open(self, ctx:Context=None) -> None:
        """negotiate the session (if not done yet)"""
        self._ensure_session(ctx or Context())

    def _ensure_session(self, ctx:Context):
        if self._closed:
            raise ClosedError(f'client of {self._target.address} is closed')
        with self._lock:
            if self._session is None:
                self._session = self._manager.open(self._target, transport=self._transport,
                                                   timeout=ctx.remaining(cap=self._target.timeout))
            return self._session

    # operations

    def get(self, path, scope, ctx:Context=None):
        """read the data at path

        Parameters
        ----------
        path : Path | str
            the node to read
        scope : Scope
            CONFIG_ONLY, STATE_ONLY or BOTH; ignored by cli
        ctx : Context, optional
            cancellation and deadline

        Returns
        -------
        Result
            the data tree rooted at the top level node
        """
        return self._run(GetOperation(path, scope), ctx)

    def set(self, path, payload, encoding, merge_policy, ctx:Context=None):
        """change the data at path

        Parameters
        ----------
        path : Path | str
            the node to change
        payload : bytes | str | dict
            the new content; ignored by delete and remove
        encoding : Encoding
            encoding of payload
        merge_policy : MergePolicy
            MERGE, REPLACE, CREATE, DELETE or REMOVE; there is no default
        ctx : Context, optional
            cancellation and deadline

        Returns
        -------
        Result
            metadata carries merge_policy, destructive, datastore, committed and atomic
        """
        return self.set_many([Edit(path, payload, encoding, merge_policy)], ctx=ctx)

    def set_many(self, edits, ctx:Context=None, datastore:Datastore=None):
        """apply several edits as one request (atomic where the protocol allows)"""
        session = self._ensure_session(ctx or Context())
        if datastore is None and session.target.protocol == Protocol.NETCONF:
            capabilities = session.capabilities
            datastore = Datastore.CANDIDATE if capabilities.candidate else Datastore.RUNNING
        return self._run(SetOperation(tuple(edits), datastore=datastore), ctx)

    def commit(self, confirm_timeout:int=None, ctx:Context=None):
        """commit the candidate datastore to running"""
        return self._run(ControlOperation(OperationKind.COMMIT, confirm_timeout=confirm_timeout), ctx)

    def discard(self, ctx:Context=None):
        """discard uncommitted changes of the candidate datastore"""
        return self._run(ControlOperation(OperationKind.DISCARD), ctx)

    def lock(self, datastore:Datastore=None, ctx:Context=None):
        return self._run(ControlOperation(OperationKind.LOCK, datastore=datastore), ctx)

    def unlock(self, datastore:Datastore=None, ctx:Context=None):
        return self._run(ControlOperation(OperationKind.UNLOCK, datastore=datastore), ctx)

    def subscribe(self, path, mode, ctx:Context=None, buffer_size:int=None):
        """subscribe to path and return a Subscription

        Parameters
        ----------
        path : Path | str
            the subtree to watch
        mode : Sample | OnChange
            periodic or on change delivery
        ctx : Context, optional
            cancelling the context cancels the subscription
        buffer_size : int, optional
            undelivered updates kept before the oldest is dropped

        Returns
        -------
        Subscription
            iterable of Results; cancel() ends it
        """
        operation = SubscribeOperation(path, mode)
        ctx = ctx or Context()
        session = self._ensure_session(ctx)
        start = time.monotonic()
        error = None
        try:
            return session.subscribe(operation, ctx, buffer_size=buffer_size)
        except NmclientError as exc:
            error = exc
            raise
        finally:
            self._emit(operation, time.monotonic() - start, error)

    def _run(self, operation, ctx:Context=None):
        ctx = ctx or Context()
        session = self._ensure_session(ctx)
        start = time.monotonic()
        error = None
        try:
            if isinstance(operation, ControlOperation) and not session.capabilities.supports_commit \
                    and operation.kind in (OperationKind.COMMIT, OperationKind.DISCARD):
                raise UnsupportedError(f'{operation.kind.value} needs a candidate datastore',
                                       additional_info=f'{self._target.protocol.value} session has none')
            if isinstance(operation, ControlOperation) and not session.capabilities.supports_lock \
                    and operation.kind in (OperationKind.LOCK, OperationKind.UNLOCK):
                raise UnsupportedError(f'{self._target.protocol.value} does not support locking')
            if isinstance(operation, SetOperation) and operation.destructive:
                logger.bind(extra="client").info(f'destructive set on {self._target.address} path {operation.path}')
            result = session.execute(operation, ctx)
        except NmclientError as exc:
            error = exc
            if isinstance(operation, SetOperation):
                self._annotate_set_error(exc, operation, session.capabilities)
            raise
        finally:
            self._emit(operation, time.monotonic() - start, error)

        if isinstance(operation, SetOperation):
            result.metadata.update(self._set_metadata(operation, session.capabilities))
        return result

    @staticmethod
    def _atomic(operation:SetOperation, capabilities) -> bool:
        if capabilities.protocol == Protocol.RESTCONF:
            # only yang-patch (multiple edits) is transactional
            return capabilities.supports_atomic_set and len(operation.edits) > 1
        return capabilities.supports_atomic_set

    def _set_metadata(self, operation:SetOperation, capabilities) -> dict:
        policies = [e.merge_policy.value for e in operation.edits]
        return {'merge_policy': policies[0] if len(policies) == 1 else policies,
                'destructive': operation.destructive,
                'datastore': operation.datastore.value if operation.datastore else None,
                'committed': False,
                'atomic': self._atomic(operation, capabilities)}

    def _annotate_set_error(self, exc, operation:SetOperation, capabilities) -> None:
        atomic = self._atomic(operation, capabilities)
        if isinstance(exc, UnsupportedError) or exc.metadata.get('sent') is False:
            applied = 'none'
        elif isinstance(exc, ServerRejectedError) and atomic:
            applied = 'none'
        else:
            applied = 'unknown'
        exc.metadata.setdefault('applied', applied)
        exc.metadata.setdefault('atomic', atomic)
        exc.metadata.setdefault('merge_policy', [e.merge_policy.value for e in operation.edits])
        exc.metadata.setdefault('destructive', operation.destructive)

    def _emit(self, operation, duration:float, error=None) -> None:
        if self._telemetry is None:
            return
        merge_policy = None
        destructive = False
        if isinstance(operation, SetOperation):
            merge_policy = ','.join(e.merge_policy.value for e in operation.edits)
            destructive = operation.destructive
        event = OperationEvent(target=self._target.address,
                               protocol=self._target.protocol.value,
                               kind=operation.kind.value,
                               path=str(operation.path) if operation.path is not None else None,
                               merge_policy=merge_policy,
                               destructive=destructive,
                               duration=duration,
                               outcome='ok' if error is None else 'error',
                               error_kind=error.kind.value if error is not None and error.kind else None,
                               error=str(error) if error is not None else None)
        try:
            self._telemetry(event)
        except Exception as exc:
            logger.bind(extra="client").error(f'telemetry collaborator failed: {exc}')

    # teardown

    def close(self) -> None:
        """close the session; calling close again is a no-op"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            session, self._session = self._session, None
        if session is None:
            return
        if session.target.protocol == Protocol.NETCONF and not session.closed:
            try:
                session.execute(ControlOperation(OperationKind.CLOSE_SESSION),
                                Context(timeout=min(5.0, self._target.timeout)))
            except NmclientError as exc:
                logger.bind(extra="client").debug(f'close-session failed: {exc}')
        session.close()
        logger.bind(extra="client").debug(f'client of {self._target.address} closed')
