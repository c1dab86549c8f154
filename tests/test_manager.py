import pytest

from nmclient.codec import netconf
from nmclient.codec.gnmi import GnmiCodec
from nmclient.codec.netconf import NetconfCodec
from nmclient.codec.restconf import RestconfCodec
from nmclient.codec.cli import CliCodec
from nmclient.model.capabilities import Datastore
from nmclient.model.operation import MergePolicy, Encoding
from nmclient.model.target import Protocol
from nmclient.session.manager import SessionManager, create_transport
from nmclient.session.session import SessionState
from nmclient.transport.grpc import GrpcReply
from nmclient.transport.ssh import SshTransport
from nmclient.transport.http import HttpTransport
from nmclient.tools.exceptions import NegotiationError

from mocks import (make_target, MockNetconfTransport, MockHttpTransport, MockGnmiTransport, MockCliTransport,
                   http_response, IF_NS, YANG_PUSH, SUBSCRIBED_NOTIFICATIONS)


def test_create_transport_follows_protocol():
    assert isinstance(create_transport(make_target(Protocol.NETCONF)), SshTransport)
    assert isinstance(create_transport(make_target(Protocol.RESTCONF)), HttpTransport)


def test_netconf_base_10_only():
    transport = MockNetconfTransport(make_target(), capabilities=(netconf.BASE_10,))
    session = SessionManager().open(transport.target, transport=transport)
    try:
        caps = session.capabilities
        assert caps.version == '1.0'
        assert transport.framing == '1.0'
        assert caps.session_id == '42'
        assert caps.datastores == frozenset({Datastore.RUNNING})
        assert not caps.supports_commit
        assert not caps.supports_subscribe
        assert caps.encodings == (Encoding.XML,)
        assert isinstance(session.codec, NetconfCodec)
        assert session.state == SessionState.OPEN
    finally:
        session.close()


def test_netconf_base_11_candidate_and_module_namespaces():
    capabilities = (netconf.BASE_10, netconf.BASE_11, netconf.CAP_CANDIDATE,
                    'urn:example:routing?module=example-routing&revision=2024-01-01',
                    YANG_PUSH, SUBSCRIBED_NOTIFICATIONS)
    transport = MockNetconfTransport(make_target(), capabilities=capabilities)
    session = SessionManager().open(transport.target, transport=transport)
    try:
        caps = session.capabilities
        assert caps.version == '1.1'
        assert transport.framing == '1.1'
        assert caps.candidate
        assert caps.supports_commit
        assert caps.supports_atomic_set
        assert caps.supports_subscribe
        namespaces = session.codec.namespaces
        assert namespaces['example-routing'] == 'urn:example:routing'
        assert namespaces['interfaces'] == IF_NS
        assert 'example-routing' in [m.name for m in caps.models]
    finally:
        session.close()


def test_netconf_hello_without_base_fails_and_closes_transport():
    transport = MockNetconfTransport(make_target(), capabilities=('urn:example:nothing',))
    with pytest.raises(NegotiationError):
        SessionManager().open(transport.target, transport=transport)
    assert transport.closed


def test_restconf_discovery():
    target = make_target(Protocol.RESTCONF)
    transport = MockHttpTransport(target, handler=None,
                                  capabilities=['urn:ietf:params:restconf:capability:yang-patch:1.0'],
                                  yang_library=[{'name': 'ietf-subscribed-notifications',
                                                 'revision': '2019-09-09',
                                                 'namespace': 'urn:ietf:params:xml:ns:yang:'
                                                              'ietf-subscribed-notifications'}])
    session = SessionManager().open(target, transport=transport)
    try:
        caps = session.capabilities
        assert caps.extras['api_root'] == '/restconf'
        assert caps.supports_atomic_set
        assert caps.supports_subscribe
        assert caps.merge_policies == frozenset(MergePolicy)
        assert isinstance(session.codec, RestconfCodec)
        assert session.codec.api_root == '/restconf'
    finally:
        session.close()


def test_restconf_without_host_meta_fails():
    target = make_target(Protocol.RESTCONF)
    transport = MockHttpTransport(target, handler=None)
    transport._respond = lambda request: http_response(request, status=404)

    with pytest.raises(NegotiationError):
        SessionManager().open(target, transport=transport)
    assert transport.closed


def test_gnmi_capabilities():
    target = make_target(Protocol.GNMI)
    transport = MockGnmiTransport(target)
    session = SessionManager().open(target, transport=transport)
    try:
        caps = session.capabilities
        assert caps.encodings == (Encoding.JSON_IETF,)
        assert caps.version == '0.8.0'
        assert caps.supports_subscribe
        assert not caps.supports_merge_policy(MergePolicy.CREATE)
        assert isinstance(session.codec, GnmiCodec)
    finally:
        session.close()


def test_gnmi_capabilities_rejected_is_negotiation_error():
    target = make_target(Protocol.GNMI)
    transport = MockGnmiTransport(target, capabilities=GrpcReply(call=None, code='UNIMPLEMENTED',
                                                                 details='no capabilities'))
    with pytest.raises(NegotiationError):
        SessionManager().open(target, transport=transport)
    assert transport.closed


def test_cli_capabilities_are_declared():
    target = make_target(Protocol.CLI, cli_capabilities=('show', 'config'), cli_parse=True, platform='nxos')
    transport = MockCliTransport(target)
    session = SessionManager().open(target, transport=transport)
    try:
        caps = session.capabilities
        assert caps.features == frozenset({'show', 'config'})
        assert caps.merge_policies == frozenset({MergePolicy.MERGE})
        assert not caps.supports_subscribe
        assert isinstance(session.codec, CliCodec)
        assert session.codec._platform == 'cisco_nxos'
    finally:
        session.close()
