"""RESTCONF codec (RFC 8040, RFC 8072, RFC 8650)

Resources are addressed by module qualified URIs below {api_root}/data. The
first element of a path needs a module, either from the path itself
('ietf-interfaces:interfaces') or from Target.modules.

JSON payloads are the content of the addressed node and are wrapped in its
qualified name if they are not already. XML payloads are sent as given and
must be the addressed element itself.
"""
import json
from urllib.parse import quote
from lxml import etree
from loguru import logger

from nmclient.codec.abstract_codec import AbstractCodec
from nmclient.codec.netconf import to_tree
from nmclient.model.capabilities import ModelData
from nmclient.model.operation import (GetOperation, SetOperation, SubscribeOperation, ControlOperation,
                                      OperationKind, Scope, MergePolicy, Encoding, Sample)
from nmclient.model.result import Result, Source, normalize, insert, strip_module
from nmclient.transport.http import HttpRequest, HttpResponse
from nmclient.tools.exceptions import (DecodeError, NegotiationError, NodeNotFoundError,
                                       ServerRejectedError, UnsupportedError)

YANG_DATA_JSON = 'application/yang-data+json'
YANG_DATA_XML = 'application/yang-data+xml'
YANG_PATCH_JSON = 'application/yang-patch+json'
YANG_PATCH_XML = 'application/yang-patch+xml'

XRD_NS = 'http://docs.oasis-open.org/ns/xri/xrd-1.0'
YANG_PATCH_NS = 'urn:ietf:params:xml:ns:yang:ietf-yang-patch'
CAP_YANG_PATCH = 'urn:ietf:params:restconf:capability:yang-patch:1.0'
CAPABILITIES_RESOURCE = 'ietf-restconf-monitoring:restconf-state/capabilities'
YANG_LIBRARY_RESOURCE = 'ietf-yang-library:modules-state'

CONTENT = {Scope.CONFIG_ONLY: 'config', Scope.STATE_ONLY: 'nonconfig', Scope.BOTH: 'all'}
SOURCE = {Scope.CONFIG_ONLY: Source.CONFIG, Scope.STATE_ONLY: Source.STATE, Scope.BOTH: Source.MIXED}
METHODS = {MergePolicy.MERGE: 'PATCH',
           MergePolicy.REPLACE: 'PUT',
           MergePolicy.CREATE: 'POST',
           MergePolicy.DELETE: 'DELETE',
           MergePolicy.REMOVE: 'DELETE'}
# notifications that end a subscription
END_EVENTS = ('subscription-terminated', 'subscription-completed', 'subscription-killed')

_PARSER = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)


def _media(encoding:Encoding, patch:bool=False) -> str:
    if encoding == Encoding.XML:
        return YANG_PATCH_XML if patch else YANG_DATA_XML
    return YANG_PATCH_JSON if patch else YANG_DATA_JSON

def _loads(body:bytes):
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DecodeError('response is not valid JSON', additional_info=str(exc)) from exc

def _fromstring(body:bytes):
    try:
        return etree.fromstring(body, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise DecodeError('response is not well-formed XML', additional_info=str(exc)) from exc


# discovery

def discovery_request() -> HttpRequest:
    return HttpRequest(method='GET', path='/.well-known/host-meta',
                       headers={'Accept': 'application/xrd+xml'})

def parse_host_meta(response:HttpResponse) -> str:
    """return the api root announced by the host-meta resource

    Raises
    ------
    NegotiationError
        if the resource is missing or has no restconf link
    """
    if not response.ok:
        raise NegotiationError(f'restconf discovery failed with status {response.status}')
    if response.content_type.endswith('json'):
        links = _loads(response.body).get('links', [])
        hrefs = [link.get('href') for link in links if link.get('rel') == 'restconf']
    else:
        try:
            root = etree.fromstring(response.body, parser=_PARSER)
        except etree.XMLSyntaxError as exc:
            raise NegotiationError('malformed host-meta document', additional_info=str(exc)) from exc
        hrefs = [link.get('href') for link in root.iter(f'{{{XRD_NS}}}Link', 'Link')
                 if link.get('rel') == 'restconf']
    hrefs = [h for h in hrefs if h]
    if not hrefs:
        raise NegotiationError('host-meta does not announce a restconf root')
    return hrefs[0].rstrip('/')

def capabilities_request(api_root:str) -> HttpRequest:
    return HttpRequest(method='GET', path=f'{api_root}/data/{CAPABILITIES_RESOURCE}',
                       headers={'Accept': YANG_DATA_JSON})

def parse_capabilities(response:HttpResponse) -> list:
    """return the capability URIs of the restconf monitoring resource"""
    if not response.ok:
        raise NegotiationError(f'reading restconf capabilities failed with status {response.status}')
    if response.content_type.endswith('xml'):
        root = _fromstring(response.body)
        return [c.text.strip() for c in root.iter('{*}capability') if c.text]
    data = normalize(_loads(response.body))
    capabilities = data.get('capabilities', {}).get('capability', [])
    if isinstance(capabilities, str):
        capabilities = [capabilities]
    return list(capabilities)

def yang_library_request(api_root:str) -> HttpRequest:
    return HttpRequest(method='GET', path=f'{api_root}/data/{YANG_LIBRARY_RESOURCE}',
                       headers={'Accept': YANG_DATA_JSON})

def parse_yang_library(response:HttpResponse) -> list:
    """return ModelData of all modules (an unavailable yang library is not an error)"""
    if not response.ok or not response.body:
        return []
    data = normalize(_loads(response.body))
    modules = data.get('modules-state', {}).get('module', [])
    return [ModelData(name=m.get('name'), version=m.get('revision') or None, namespace=m.get('namespace'))
            for m in modules if isinstance(m, dict)]


class RestconfCodec(AbstractCodec):
    """json/xml codec of restconf

    Parameters
    ----------
    api_root : str
        the api root learned during discovery
    modules : dict
        top level element name to yang module name
    """
    protocol = 'restconf'
    establishes_subscriptions = True

    def __init__(self, api_root:str='/restconf', modules:dict=None):
        self._api_root = api_root.rstrip('/')
        self._modules = dict(modules or {})

    @property
    def api_root(self) -> str:
        return self._api_root

    # uri

    def _module(self, elem, parent_module:str=None) -> str:
        module = elem.module or parent_module or self._modules.get(elem.name)
        if module is None:
            raise UnsupportedError(f'no yang module known for top level element {elem.name}',
                                   additional_info='qualify the path or add it to Target.modules')
        return module

    def resource(self, path) -> str:
        """return the data resource of path relative to {api_root}/data"""
        segments = []
        module = None
        for elem in path.elems:
            elem_module = self._module(elem, module)
            name = f'{elem_module}:{elem.name}' if elem_module != module else elem.name
            if elem.keys:
                name += '=' + ','.join(quote(value, safe='') for _, value in elem.keys)
            segments.append(name)
            module = elem_module
        return '/'.join(segments)

    def data_url(self, path) -> str:
        resource = self.resource(path)
        return f'{self._api_root}/data/{resource}' if resource else f'{self._api_root}/data'

    def xpath(self, path) -> str:
        """return path as an xpath filter using module names as prefixes"""
        steps = []
        module = None
        for elem in path.elems:
            module = self._module(elem, module)
            step = f'{module}:{elem.name}'
            for key, value in elem.keys:
                step += f"[{module}:{key}='{value}']"
            steps.append(step)
        return '/' + '/'.join(steps)

    def _qualified_name(self, path) -> str:
        module = None
        for elem in path.elems:
            module = self._module(elem, module)
        return f'{module}:{path.last.name}'

    # encode

    def encode_request(self, operation, capabilities, correlation_id:int) -> HttpRequest:
        if isinstance(operation, GetOperation):
            encoding = Encoding.XML if capabilities.preferred_encoding == Encoding.XML else Encoding.JSON
            return HttpRequest(method='GET',
                               path=self.data_url(operation.path),
                               headers={'Accept': _media(encoding)},
                               params={'content': CONTENT[operation.scope]},
                               correlation_id=correlation_id)
        if isinstance(operation, SetOperation):
            self.check_set(operation, capabilities)
            if len(operation.edits) > 1:
                if not capabilities.supports_atomic_set:
                    raise UnsupportedError('the server does not support yang-patch')
                return self._encode_yang_patch(operation, correlation_id)
            return self._encode_edit(operation.edits[0], correlation_id)
        if isinstance(operation, SubscribeOperation):
            return self._encode_subscribe(operation, capabilities, correlation_id)
        if isinstance(operation, ControlOperation) and operation.kind == OperationKind.UNSUBSCRIBE:
            body = {'ietf-subscribed-notifications:input': {'id': _subscription_id(operation.subscription_id)}}
            return HttpRequest(method='POST',
                               path=f'{self._api_root}/operations/ietf-subscribed-notifications:delete-subscription',
                               headers={'Content-Type': YANG_DATA_JSON, 'Accept': YANG_DATA_JSON},
                               body=json.dumps(body).encode(),
                               correlation_id=correlation_id)
        raise self.unsupported(operation)

    def _encode_edit(self, edit, correlation_id:int) -> HttpRequest:
        if edit.path.is_root and edit.merge_policy != MergePolicy.REPLACE:
            raise UnsupportedError(f'{edit.merge_policy.value} needs a path below the root')
        method = METHODS[edit.merge_policy]
        headers = {'Accept': YANG_DATA_JSON}
        body = None
        if edit.merge_policy.needs_payload:
            headers['Content-Type'] = _media(edit.encoding)
            body = self._body(edit)
        url = self.data_url(edit.path.parent if edit.merge_policy == MergePolicy.CREATE else edit.path)
        return HttpRequest(method=method, path=url, headers=headers, body=body, correlation_id=correlation_id)

    def _body(self, edit) -> bytes:
        if not edit.encoding.is_json:
            return edit.payload
        return json.dumps(self._value(edit)).encode()

    def _value(self, edit) -> dict:
        """return the json payload wrapped in the qualified name of the addressed node"""
        try:
            value = json.loads(edit.payload)
        except ValueError as exc:
            raise DecodeError(f'payload for {edit.path} is not valid JSON', additional_info=str(exc)) from exc
        if edit.path.is_root:
            return value
        last = edit.path.last
        if isinstance(value, dict) and len(value) == 1 and strip_module(next(iter(value))) == last.name:
            return value
        if last.keys and isinstance(value, dict):
            entry = dict(last.keys)
            entry.update(value)
            value = [entry]
        return {self._qualified_name(edit.path): value}

    def _encode_yang_patch(self, operation:SetOperation, correlation_id:int) -> HttpRequest:
        encodings = {e.encoding for e in operation.edits if e.merge_policy.needs_payload}
        xml = Encoding.XML in encodings
        if xml and len(encodings) > 1:
            raise UnsupportedError('a yang-patch cannot mix xml and json payloads')
        patch_id = f'nmclient-{correlation_id}'
        if xml:
            body = self._yang_patch_xml(operation, patch_id)
        else:
            edits = []
            for idx, edit in enumerate(operation.edits, start=1):
                entry = {'edit-id': f'edit-{idx}',
                         'operation': edit.merge_policy.value,
                         'target': '/' + self.resource(edit.path)}
                if edit.merge_policy.needs_payload:
                    entry['value'] = self._value(edit)
                edits.append(entry)
            body = json.dumps({'ietf-yang-patch:yang-patch': {'patch-id': patch_id, 'edit': edits}}).encode()
        return HttpRequest(method='PATCH',
                           path=f'{self._api_root}/data',
                           headers={'Content-Type': _media(Encoding.XML if xml else Encoding.JSON, patch=True),
                                    'Accept': YANG_DATA_JSON},
                           body=body,
                           correlation_id=correlation_id)

    def _yang_patch_xml(self, operation:SetOperation, patch_id:str) -> bytes:
        patch = etree.Element(etree.QName(YANG_PATCH_NS, 'yang-patch'), nsmap={None: YANG_PATCH_NS})
        etree.SubElement(patch, etree.QName(YANG_PATCH_NS, 'patch-id')).text = patch_id
        for idx, edit in enumerate(operation.edits, start=1):
            entry = etree.SubElement(patch, etree.QName(YANG_PATCH_NS, 'edit'))
            etree.SubElement(entry, etree.QName(YANG_PATCH_NS, 'edit-id')).text = f'edit-{idx}'
            etree.SubElement(entry, etree.QName(YANG_PATCH_NS, 'operation')).text = edit.merge_policy.value
            etree.SubElement(entry, etree.QName(YANG_PATCH_NS, 'target')).text = '/' + self.resource(edit.path)
            if edit.merge_policy.needs_payload:
                value = etree.SubElement(entry, etree.QName(YANG_PATCH_NS, 'value'))
                try:
                    value.append(etree.fromstring(edit.payload, parser=_PARSER))
                except etree.XMLSyntaxError as exc:
                    raise DecodeError('payload is not well-formed XML', additional_info=str(exc)) from exc
        return etree.tostring(patch, xml_declaration=True, encoding='UTF-8')

    def _encode_subscribe(self, operation:SubscribeOperation, capabilities, correlation_id:int) -> HttpRequest:
        if not capabilities.supports_subscribe:
            raise UnsupportedError('the server does not support subscribed notifications')
        params = {'ietf-yang-push:datastore': 'ietf-datastores:operational'}
        if not operation.path.is_root:
            params['ietf-yang-push:datastore-xpath-filter'] = self.xpath(operation.path)
        if isinstance(operation.mode, Sample):
            # period is in centiseconds
            params['ietf-yang-push:periodic'] = {'period': max(1, int(round(operation.mode.interval * 100)))}
        else:
            params['ietf-yang-push:on-change'] = {}
        body = {'ietf-subscribed-notifications:input': params}
        return HttpRequest(method='POST',
                           path=f'{self._api_root}/operations/ietf-subscribed-notifications:establish-subscription',
                           headers={'Content-Type': YANG_DATA_JSON, 'Accept': YANG_DATA_JSON},
                           body=json.dumps(body).encode(),
                           correlation_id=correlation_id)

    def stream_request(self, uri:str) -> HttpRequest:
        """return the request that opens the event stream of an established subscription"""
        return HttpRequest(method='GET', path=uri, headers={'Accept': 'text/event-stream'})

    # decode

    def correlation_id(self, wire:HttpResponse):
        return wire.request.correlation_id if wire.request is not None else None

    def decode_response(self, wire:HttpResponse, operation) -> tuple:
        correlation_id = self.correlation_id(wire)
        if isinstance(operation, GetOperation):
            if wire.status == 404:
                raise NodeNotFoundError(f'resource {self.data_url(operation.path)} not found')
            self._raise_for_status(wire)
            return self._decode_get(wire, operation), correlation_id

        if isinstance(operation, SetOperation):
            if (wire.status == 404 and len(operation.edits) == 1
                    and operation.edits[0].merge_policy == MergePolicy.REMOVE):
                logger.bind(extra="restconf").debug(f'remove of absent node {operation.path} ignored')
                return Result(source=Source.CONFIG, path=operation.path, metadata={'status': 404}), correlation_id
            self._raise_for_status(wire)
            if len(operation.edits) > 1:
                self._raise_for_patch_status(wire)
            return Result(source=Source.CONFIG, path=operation.path, metadata={'status': wire.status}), correlation_id

        if isinstance(operation, SubscribeOperation):
            self._raise_for_status(wire)
            output = normalize(_loads(wire.body)).get('output', {})
            if 'id' not in output:
                raise DecodeError('establish-subscription reply carries no subscription id')
            uri = output.get('uri')
            if not uri:
                uri = f'{self._api_root}/subscriptions/{output["id"]}'
            return Result(source=Source.STATE, path=operation.path,
                          metadata={'subscription_id': str(output['id']), 'uri': uri}), correlation_id

        self._raise_for_status(wire)
        return Result(metadata={'status': wire.status}), correlation_id

    def _decode_get(self, wire:HttpResponse, operation:GetOperation) -> Result:
        path = operation.path
        if not wire.body:
            raise NodeNotFoundError(f'resource {self.data_url(path)} returned no data')
        if wire.content_type.endswith('xml'):
            root = _fromstring(wire.body)
            list_names = {e.name for e in path.elems if e.keys}
            data = {etree.QName(root).localname: to_tree(root, list_names)}
        else:
            data = normalize(_loads(wire.body))

        if path.is_root:
            tree = data.get('data', data)
        else:
            name = path.last.name
            if name not in data:
                raise NodeNotFoundError(f'response does not contain {name}', additional_info=f'path {path}')
            tree = insert({}, path, data[name])
        return Result(data=tree, source=SOURCE[operation.scope], path=path,
                      metadata={'status': wire.status})

    def _errors(self, wire:HttpResponse) -> list:
        if not wire.body:
            return []
        try:
            if wire.content_type.endswith('xml'):
                root = etree.fromstring(wire.body, parser=_PARSER)
                return [to_tree(e) for e in root.iter('{*}error')]
            data = normalize(json.loads(wire.body))
        except (ValueError, etree.XMLSyntaxError):
            return [{'error-message': wire.body.decode(errors='replace')[:500]}]
        return _collect_errors(data)

    def _raise_for_status(self, wire:HttpResponse) -> None:
        if wire.ok:
            return
        errors = self._errors(wire)
        first = errors[0] if errors else {}
        request = wire.request
        where = f'{request.method} {request.path}' if request is not None else 'request'
        raise ServerRejectedError(f'{where} failed with status {wire.status}',
                                  server_message=first.get('error-message'),
                                  error_tag=first.get('error-tag'),
                                  status=wire.status,
                                  metadata={'errors': errors})

    def _raise_for_patch_status(self, wire:HttpResponse) -> None:
        if not wire.body or not wire.content_type.endswith('json'):
            return
        errors = _collect_errors(normalize(_loads(wire.body)))
        if errors:
            raise ServerRejectedError('yang-patch was rejected',
                                      server_message=errors[0].get('error-message'),
                                      error_tag=errors[0].get('error-tag'),
                                      status=wire.status,
                                      metadata={'errors': errors})

    # notifications

    def decode_stream_update(self, wire):
        if isinstance(wire, HttpResponse):
            self._raise_for_status(wire)
            return None
        notification = _notification(wire)
        event_time = notification.get('eventTime')
        for name, event in notification.items():
            if name == 'eventTime':
                continue
            if name in ('subscription-started', 'subscription-modified', 'subscription-resumed',
                        'subscription-suspended'):
                return None
            metadata = {'event': name}
            if event_time:
                metadata['event_time'] = event_time
            if isinstance(event, dict) and 'id' in event:
                metadata['subscription_id'] = str(event['id'])
            if name == 'push-update':
                data = event.get('datastore-contents') or {}
            elif name == 'push-change-update':
                data = event.get('datastore-changes') or {}
            else:
                data = {name: event}
            return Result(data=data, source=Source.STATE, metadata=metadata)
        return None

    def is_stream_end(self, wire) -> bool:
        if isinstance(wire, HttpResponse):
            return False
        try:
            notification = _notification(wire)
        except DecodeError:
            return False
        return any(name in END_EVENTS for name in notification)


def _notification(wire:bytes) -> dict:
    """return the events of one xml or json notification by name"""
    if wire.lstrip().startswith(b'<'):
        root = _fromstring(wire)
        return {etree.QName(child).localname: to_tree(child, {'edit'}) for child in root}
    data = normalize(_loads(wire))
    notification = data.get('notification') if isinstance(data, dict) else None
    if not isinstance(notification, dict):
        raise DecodeError('event is not a notification')
    return notification


def _subscription_id(value):
    return int(value) if isinstance(value, str) and value.isdigit() else value

def _collect_errors(data) -> list:
    """return all entries of 'error' lists in a normalized errors or yang-patch-status tree"""
    errors = []
    if isinstance(data, dict):
        for key, value in data.items():
            if key == 'error' and isinstance(value, list):
                errors.extend(v for v in value if isinstance(v, dict))
            elif key == 'error' and isinstance(value, dict):
                errors.append(value)
            else:
                errors.extend(_collect_errors(value))
    elif isinstance(data, list):
        for value in data:
            errors.extend(_collect_errors(value))
    return errors
