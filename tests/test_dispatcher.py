import threading
import time
import grpc
import pytest
from lxml import etree

from nmclient.context import Context
from nmclient.model.operation import GetOperation, Scope
from nmclient.session.manager import SessionManager
from nmclient.session.session import SessionState
from nmclient.model.target import Protocol
from nmclient.transport.grpc import GrpcTransport
from nmclient.tools.exceptions import ClosedError, ConnectError, DecodeError, OperationCancelled, OperationTimeout

from mocks import (make_target, MockNetconfTransport, MockHttpTransport, MockCliTransport, capability_response,
                   http_response, rpc_reply, IF_NS, NC)


def interface_reply(message_id, name) -> bytes:
    return rpc_reply(message_id, f'<data><interfaces xmlns="{IF_NS}"><interface><name>{name}</name>'
                                 f'<description>{name} port</description></interface></interfaces></data>')


def requested_name(rpc) -> str:
    return rpc.findtext(f'.//{{{IF_NS}}}name')


def open_session(handler):
    transport = MockNetconfTransport(make_target(), handler=handler)
    return SessionManager().open(transport.target, transport=transport), transport


def test_concurrent_gets_receive_their_own_reply():
    seen_ids = []

    def handler(rpc):
        message_id = rpc.get('message-id')
        seen_ids.append(message_id)
        replies = [interface_reply(message_id, requested_name(rpc))]
        # late duplicates of earlier requests must be discarded
        if len(seen_ids) > 1:
            replies.insert(0, interface_reply(seen_ids[-2], 'stale'))
        if int(message_id) % 2:
            replies.insert(0, interface_reply(int(message_id) + 1000, 'unknown'))
        return replies

    session, _ = open_session(handler)
    names = [f'eth{i}' for i in range(12)]
    results = {}
    errors = []

    def worker(name):
        try:
            operation = GetOperation(f'/interfaces/interface[name={name}]', Scope.CONFIG_ONLY)
            results[name] = session.execute(operation, Context(timeout=5))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    session.close()

    assert errors == []
    for name in names:
        assert results[name].find(f'/interfaces/interface[name={name}]/description') == f'{name} port'
    assert len(set(seen_ids)) == len(names)


def test_timeout_degrades_session_and_late_reply_is_discarded():
    pending = []

    def handler(rpc):
        if not pending:
            pending.append(rpc.get('message-id'))
            return []
        return [interface_reply(rpc.get('message-id'), requested_name(rpc))]

    session, transport = open_session(handler)
    try:
        with pytest.raises(OperationTimeout):
            session.execute(GetOperation('/interfaces/interface[name=eth0]', Scope.CONFIG_ONLY), Context(timeout=0.2))
        assert session.state == SessionState.DEGRADED

        transport.push(interface_reply(pending[0], 'eth0'))
        result = session.execute(GetOperation('/interfaces/interface[name=eth1]', Scope.CONFIG_ONLY),
                                 Context(timeout=2))
        assert result.find('/interfaces/interface[name=eth1]/name') == 'eth1'
    finally:
        session.close()


def test_cancel_while_waiting():
    session, _ = open_session(lambda rpc: [])
    ctx = Context(timeout=5)
    threading.Timer(0.1, ctx.cancel).start()
    try:
        with pytest.raises(OperationCancelled):
            session.execute(GetOperation('/interfaces', Scope.BOTH), ctx)
    finally:
        session.close()


def test_cancelled_context_never_sends():
    session, transport = open_session(None)
    ctx = Context()
    ctx.cancel()
    try:
        with pytest.raises(OperationCancelled):
            session.execute(GetOperation('/interfaces', Scope.BOTH), ctx)
        assert transport.sent == []
    finally:
        session.close()


def test_transport_failure_closes_session_and_fails_pending_call():
    session, transport = open_session(lambda rpc: [])
    threading.Timer(0.1, transport.fail).start()

    with pytest.raises(ConnectError):
        session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=5))

    deadline = time.monotonic() + 2
    while not session.closed and time.monotonic() < deadline:
        time.sleep(0.01)
    assert session.closed
    assert isinstance(session.error, ConnectError)
    with pytest.raises(ClosedError):
        session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=1))


def test_exchange_reply_with_other_id_is_rejected():
    target = make_target(Protocol.RESTCONF)

    def handler(request):
        other = type(request)(method=request.method, path=request.path, correlation_id=999)
        return http_response(other, body='{"ietf-interfaces:interfaces": {}}')

    transport = MockHttpTransport(target, handler=handler)
    session = SessionManager().open(target, transport=transport)
    try:
        with pytest.raises(DecodeError):
            session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=1))
    finally:
        session.close()


def test_correlation_ids_increase():
    session, transport = open_session(lambda rpc: [interface_reply(rpc.get('message-id'), 'eth0')])
    try:
        for _ in range(3):
            session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=1))
    finally:
        session.close()
    assert [rpc.get('message-id') for rpc in transport.sent] == ['1', '2', '3']
    assert all(etree.QName(rpc).namespace == NC for rpc in transport.sent)


def test_cancel_interrupts_http_call_in_flight():
    target = make_target(Protocol.RESTCONF)
    release = threading.Event()
    first = []

    def handler(request):
        if not first:
            first.append(request)
            release.wait(2)
            return http_response(request, body='{"ietf-interfaces:interfaces": {"interface": [{"name": "stale"}]}}')
        return http_response(request, body='{"ietf-interfaces:interfaces": {"interface": [{"name": "eth1"}]}}')

    transport = MockHttpTransport(target, handler=handler)
    session = SessionManager().open(target, transport=transport)
    ctx = Context(timeout=5)
    threading.Timer(0.1, ctx.cancel).start()
    try:
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            session.execute(GetOperation('/interfaces', Scope.BOTH), ctx)
        assert time.monotonic() - started < 0.5
        assert session.state == SessionState.OPEN

        release.set()
        result = session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=2))
        assert result.find('/interfaces/interface')[0]['name'] == 'eth1'
    finally:
        release.set()
        session.close()


def test_deadline_interrupts_cli_call_and_degrades_session():
    release = threading.Event()

    class SlowCliTransport(MockCliTransport):
        def send(self, command, timeout:float=None) -> None:
            release.wait(2)
            super().send(command, timeout=timeout)

    target = make_target(Protocol.CLI, cli_capabilities=('interfaces',))
    transport = SlowCliTransport(target, outputs={'show interfaces': 'eth0 up'})
    session = SessionManager().open(target, transport=transport)
    try:
        started = time.monotonic()
        with pytest.raises(OperationTimeout):
            session.execute(GetOperation('/interfaces', Scope.BOTH), Context(timeout=0.2))
        assert time.monotonic() - started < 0.7
        assert session.state == SessionState.DEGRADED
    finally:
        release.set()
        session.close()


class BlockingFuture:
    def __init__(self):
        self.cancelled = threading.Event()

    def result(self):
        self.cancelled.wait(5)
        raise grpc.FutureCancelledError()

    def cancel(self):
        self.cancelled.set()
        return True


class DoneFuture:
    def __init__(self, message):
        self.message = message

    def result(self):
        return self.message

    def cancel(self):
        return False


class StubMethod:
    def __init__(self, make_future):
        self.make_future = make_future
        self.futures = []

    def future(self, request, metadata=None, timeout=None):
        future = self.make_future()
        self.futures.append(future)
        return future


class BlockingStub:
    """gNMI stub whose Get never answers"""

    def __init__(self):
        self.Capabilities = StubMethod(lambda: DoneFuture(capability_response()))
        self.Get = StubMethod(BlockingFuture)


def test_cancel_interrupts_grpc_call_in_flight():
    target = make_target(Protocol.GNMI)
    transport = GrpcTransport(target)
    transport._stub = BlockingStub()
    transport._connected = True
    session = SessionManager().open(target, transport=transport)
    ctx = Context(timeout=5)
    threading.Timer(0.1, ctx.cancel).start()
    try:
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            session.execute(GetOperation('/interfaces', Scope.BOTH), ctx)
        assert time.monotonic() - started < 0.5

        future = transport._stub.Get.futures[0]
        assert future.cancelled.wait(1)
        assert session.state == SessionState.OPEN
    finally:
        session.close()
