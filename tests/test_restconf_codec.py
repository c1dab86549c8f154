import json
import pytest

from nmclient.codec import restconf
from nmclient.codec.restconf import RestconfCodec
from nmclient.model.capabilities import Capabilities, Datastore
from nmclient.model.operation import (GetOperation, SetOperation, SubscribeOperation, ControlOperation,
                                      OperationKind, Edit, Scope, MergePolicy, Encoding, Sample)
from nmclient.model.path import Path
from nmclient.model.result import Source
from nmclient.model.target import Protocol
from nmclient.transport.http import HttpRequest
from nmclient.tools.exceptions import NegotiationError, NodeNotFoundError, ServerRejectedError, UnsupportedError

from mocks import http_response


def make_caps(atomic=False, subscribe=False) -> Capabilities:
    return Capabilities(protocol=Protocol.RESTCONF,
                        encodings=(Encoding.JSON, Encoding.XML),
                        merge_policies=frozenset(MergePolicy),
                        datastores=frozenset({Datastore.RUNNING, Datastore.OPERATIONAL}),
                        supports_atomic_set=atomic,
                        supports_subscribe=subscribe)


def make_codec() -> RestconfCodec:
    return RestconfCodec('/restconf', {'interfaces': 'ietf-interfaces', 'snmp': 'ietf-snmp'})


def test_host_meta_xrd_and_jrd():
    request = restconf.discovery_request()
    assert request.path == '/.well-known/host-meta'

    xrd = http_response(request, body=b'<XRD xmlns="http://docs.oasis-open.org/ns/xri/xrd-1.0">'
                                      b'<Link rel="restconf" href="/top/restconf/"/></XRD>',
                        content_type='application/xrd+xml')
    assert restconf.parse_host_meta(xrd) == '/top/restconf'

    jrd = http_response(request, body=json.dumps({'links': [{'rel': 'restconf', 'href': '/rc'}]}),
                        content_type='application/json')
    assert restconf.parse_host_meta(jrd) == '/rc'

    with pytest.raises(NegotiationError):
        restconf.parse_host_meta(http_response(request, status=404))


def test_resource_uri_encodes_keys_and_modules():
    codec = make_codec()
    path = Path.parse("/interfaces/interface[name='Gi0/0/1']/ietf-ip:ipv4/address[ip=192.0.2.1]")

    assert codec.resource(path) == \
        'ietf-interfaces:interfaces/interface=Gi0%2F0%2F1/ietf-ip:ipv4/address=192.0.2.1'
    assert codec.data_url(Path.parse('/')) == '/restconf/data'
    assert codec.xpath(Path.parse('/interfaces/interface[name=eth0]')) == \
        "/ietf-interfaces:interfaces/ietf-interfaces:interface[ietf-interfaces:name='eth0']"


def test_unqualified_unknown_top_level_is_unsupported():
    with pytest.raises(UnsupportedError):
        make_codec().resource(Path.parse('/routing'))


def test_get_request_selects_content():
    request = make_codec().encode_request(GetOperation('/interfaces', Scope.STATE_ONLY), make_caps(), 3)

    assert request.method == 'GET'
    assert request.path == '/restconf/data/ietf-interfaces:interfaces'
    assert request.params == {'content': 'nonconfig'}
    assert request.headers['Accept'] == restconf.YANG_DATA_JSON
    assert request.correlation_id == 3


@pytest.mark.parametrize('policy, method', [
    (MergePolicy.MERGE, 'PATCH'),
    (MergePolicy.REPLACE, 'PUT'),
    (MergePolicy.DELETE, 'DELETE'),
    (MergePolicy.REMOVE, 'DELETE'),
])
def test_merge_policy_selects_method(policy, method):
    payload = {'name': 'public'} if policy.needs_payload else None
    operation = SetOperation((Edit('/snmp/community', payload, Encoding.JSON, policy),))

    request = make_codec().encode_request(operation, make_caps(), 1)

    assert request.method == method
    assert request.path == '/restconf/data/ietf-snmp:snmp/community'
    if policy.needs_payload:
        assert json.loads(request.body) == {'ietf-snmp:community': {'name': 'public'}}
    else:
        assert request.body is None


def test_create_posts_to_parent_and_wraps_list_entry():
    operation = SetOperation((Edit('/interfaces/interface[name=eth0]', {'enabled': True},
                                   Encoding.JSON, MergePolicy.CREATE),))

    request = make_codec().encode_request(operation, make_caps(), 1)

    assert request.method == 'POST'
    assert request.path == '/restconf/data/ietf-interfaces:interfaces'
    assert json.loads(request.body) == {'ietf-interfaces:interface': [{'name': 'eth0', 'enabled': True}]}


def test_multiple_edits_use_yang_patch():
    operation = SetOperation((
        Edit('/interfaces/interface[name=eth0]/description', {'description': 'uplink'},
             Encoding.JSON, MergePolicy.MERGE),
        Edit('/interfaces/interface[name=eth1]', None, Encoding.JSON, MergePolicy.DELETE),
    ))
    codec = make_codec()

    with pytest.raises(UnsupportedError):
        codec.encode_request(operation, make_caps(), 1)

    request = codec.encode_request(operation, make_caps(atomic=True), 12)
    body = json.loads(request.body)['ietf-yang-patch:yang-patch']
    assert request.method == 'PATCH'
    assert request.path == '/restconf/data'
    assert request.headers['Content-Type'] == restconf.YANG_PATCH_JSON
    assert body['patch-id'] == 'nmclient-12'
    assert [e['operation'] for e in body['edit']] == ['merge', 'delete']
    assert body['edit'][0]['target'] == '/ietf-interfaces:interfaces/interface=eth0/description'
    assert body['edit'][0]['value'] == {'description': 'uplink'}
    assert 'value' not in body['edit'][1]


def test_decode_get_json_is_rerooted():
    codec = make_codec()
    operation = GetOperation('/interfaces/interface[name=eth0]', Scope.CONFIG_ONLY)
    request = codec.encode_request(operation, make_caps(), 4)
    response = http_response(request, body=json.dumps(
        {'ietf-interfaces:interface': [{'name': 'eth0', 'enabled': True}]}))

    result, correlation_id = codec.decode_response(response, operation)

    assert correlation_id == 4
    assert result.source == Source.CONFIG
    assert result.data == {'interfaces': {'interface': [{'name': 'eth0', 'enabled': True}]}}


def test_decode_get_xml():
    codec = make_codec()
    operation = GetOperation('/interfaces', Scope.BOTH)
    request = codec.encode_request(operation, make_caps(), 4)
    response = http_response(request, content_type='application/yang-data+xml',
                             body='<interfaces xmlns="urn:ietf:params:xml:ns:yang:ietf-interfaces">'
                                  '<interface><name>eth0</name></interface></interfaces>')

    result, _ = codec.decode_response(response, operation)

    assert result.source == Source.MIXED
    assert result.find('/interfaces/interface[name=eth0]/name') == 'eth0'


def test_get_404_is_node_not_found():
    operation = GetOperation('/interfaces', Scope.BOTH)
    request = make_codec().encode_request(operation, make_caps(), 1)
    with pytest.raises(NodeNotFoundError):
        make_codec().decode_response(http_response(request, status=404), operation)


def test_remove_of_absent_node_is_ok_but_delete_is_not():
    codec = make_codec()
    for policy in (MergePolicy.REMOVE, MergePolicy.DELETE):
        operation = SetOperation((Edit('/snmp/community', None, Encoding.JSON, policy),))
        response = http_response(codec.encode_request(operation, make_caps(), 1), status=404)
        if policy == MergePolicy.REMOVE:
            result, _ = codec.decode_response(response, operation)
            assert result.metadata['status'] == 404
        else:
            with pytest.raises(ServerRejectedError):
                codec.decode_response(response, operation)


def test_errors_document_is_parsed():
    operation = SetOperation((Edit('/snmp/community', {'name': 'x'}, Encoding.JSON, MergePolicy.REPLACE),))
    request = make_codec().encode_request(operation, make_caps(), 1)
    body = {'ietf-restconf:errors': {'error': [{'error-type': 'application', 'error-tag': 'in-use',
                                                'error-message': 'locked'}]}}

    with pytest.raises(ServerRejectedError) as excinfo:
        make_codec().decode_response(http_response(request, status=409, body=json.dumps(body)), operation)

    assert excinfo.value.status == 409
    assert excinfo.value.error_tag == 'in-use'
    assert excinfo.value.server_message == 'locked'


def test_subscription_requests_and_notifications():
    codec = make_codec()
    operation = SubscribeOperation('/interfaces', Sample(10))

    request = codec.encode_request(operation, make_caps(subscribe=True), 2)
    params = json.loads(request.body)['ietf-subscribed-notifications:input']
    assert request.path.endswith('ietf-subscribed-notifications:establish-subscription')
    assert params['ietf-yang-push:periodic'] == {'period': 1000}
    assert params['ietf-yang-push:datastore-xpath-filter'] == '/ietf-interfaces:interfaces'

    reply = http_response(request, body=json.dumps({'ietf-subscribed-notifications:output': {'id': 11}}))
    result, _ = codec.decode_response(reply, operation)
    assert result.metadata == {'subscription_id': '11', 'uri': '/restconf/subscriptions/11'}

    event = json.dumps({'ietf-restconf:notification': {
        'eventTime': '2026-01-01T00:00:00Z',
        'ietf-yang-push:push-update': {'id': 11, 'datastore-contents': {
            'ietf-interfaces:interfaces': {'interface': [{'name': 'eth0'}]}}}}}).encode()
    update = codec.decode_stream_update(event)
    assert update.data == {'interfaces': {'interface': [{'name': 'eth0'}]}}
    assert update.metadata['subscription_id'] == '11'
    assert not codec.is_stream_end(event)

    delete = codec.encode_request(ControlOperation(OperationKind.UNSUBSCRIBE, subscription_id='11'),
                                  make_caps(subscribe=True), 3)
    assert json.loads(delete.body) == {'ietf-subscribed-notifications:input': {'id': 11}}


def test_stream_request():
    request = make_codec().stream_request('/restconf/subscriptions/11')
    assert request == HttpRequest(method='GET', path='/restconf/subscriptions/11',
                                  headers={'Accept': 'text/event-stream'})


def test_stream_end_is_detected_by_event_name():
    codec = make_codec()
    update = json.dumps({'ietf-restconf:notification': {
        'eventTime': '2026-01-01T00:00:00Z',
        'ietf-yang-push:push-update': {'id': 11, 'datastore-contents': {
            'ietf-interfaces:interfaces': {'interface': [{'name': 'eth0',
                                                          'description': 'subscription-terminated'}]}}}}}).encode()
    terminated = json.dumps({'ietf-restconf:notification': {
        'eventTime': '2026-01-01T00:00:01Z',
        'ietf-subscribed-notifications:subscription-terminated': {'id': 11, 'reason': 'filter-unavailable'}}}).encode()
    killed = (b'<notification xmlns="urn:ietf:params:xml:ns:netconf:notification:1.0">'
              b'<eventTime>2026-01-01T00:00:02Z</eventTime>'
              b'<subscription-killed xmlns="urn:ietf:params:xml:ns:yang:ietf-subscribed-notifications">'
              b'<id>11</id></subscription-killed></notification>')

    assert not codec.is_stream_end(update)
    assert codec.decode_stream_update(update).find('/interfaces/interface[name=eth0]/description') \
        == 'subscription-terminated'
    assert codec.is_stream_end(terminated)
    assert codec.is_stream_end(killed)
