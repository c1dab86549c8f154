"""NETCONF XML codec (RFC 6241, RFC 8526, RFC 8639/8641)

Element names are always handled as (namespace, local name) pairs using
lxml QNames. The namespaces of the known models are resolved once when the
codec is created; a lookup in a response without the matching namespace
raises NodeNotFoundError and never returns an empty result.

The payload of an edit is the XML content of the addressed node. A payload
whose root element is the addressed node itself is unwrapped.
"""
import re
from datetime import datetime
from urllib.parse import parse_qs
from lxml import etree
from loguru import logger

from nmclient.codec.abstract_codec import AbstractCodec
from nmclient.model.capabilities import Datastore
from nmclient.model.operation import (GetOperation, SetOperation, SubscribeOperation, ControlOperation,
                                      OperationKind, Scope, Sample)
from nmclient.model.result import Result, Source
from nmclient.tools.exceptions import (DecodeError, NegotiationError, NodeNotFoundError,
                                       ServerRejectedError, UnsupportedError)

NC_NS = 'urn:ietf:params:xml:ns:netconf:base:1.0'
NOTIFICATION_NS = 'urn:ietf:params:xml:ns:netconf:notification:1.0'
NMDA_NS = 'urn:ietf:params:xml:ns:yang:ietf-netconf-nmda'
DATASTORES_NS = 'urn:ietf:params:xml:ns:yang:ietf-datastores'
SN_NS = 'urn:ietf:params:xml:ns:yang:ietf-subscribed-notifications'
YP_NS = 'urn:ietf:params:xml:ns:yang:ietf-yang-push'

BASE_10 = 'urn:ietf:params:netconf:base:1.0'
BASE_11 = 'urn:ietf:params:netconf:base:1.1'
CAP_CANDIDATE = 'urn:ietf:params:netconf:capability:candidate:1.0'
CAP_WRITABLE_RUNNING = 'urn:ietf:params:netconf:capability:writable-running:1.0'
CAP_STARTUP = 'urn:ietf:params:netconf:capability:startup:1.0'
CAP_CONFIRMED_COMMIT = 'urn:ietf:params:netconf:capability:confirmed-commit:1.1'
CAP_ROLLBACK_ON_ERROR = 'urn:ietf:params:netconf:capability:rollback-on-error:1.0'
CAP_NOTIFICATION = 'urn:ietf:params:netconf:capability:notification:1.0'

STREAM_END_EVENTS = ('subscription-terminated', 'subscription-completed', 'subscription-killed',
                     'notificationComplete')

_XML_DECLARATION = re.compile(rb'^\s*<\?xml[^>]*\?>')
_PARSER = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True, huge_tree=True)


def _nc(name:str) -> etree.QName:
    return etree.QName(NC_NS, name)

def _parse(wire:bytes) -> etree._Element:
    try:
        return etree.fromstring(wire, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise DecodeError('message is not well-formed XML', additional_info=str(exc)) from exc

def _local(element) -> str:
    return etree.QName(element).localname

def _children(element):
    return [c for c in element if isinstance(c.tag, str)]

def to_tree(element, list_names=()):
    """convert an xml element to the tree of a Result

    leaves become strings (None if empty), repeated elements and elements
    named in list_names become lists.
    """
    children = _children(element)
    if not children:
        text = (element.text or '').strip()
        return text if text else None
    tree = {}
    lists = set()
    for child in children:
        name = _local(child)
        value = to_tree(child, list_names)
        if name in tree:
            if name not in lists:
                tree[name] = [tree[name]]
                lists.add(name)
            tree[name].append(value)
        elif name in list_names:
            tree[name] = [value]
            lists.add(name)
        else:
            tree[name] = value
    return tree


# hello

def build_hello(capabilities=(BASE_10, BASE_11)) -> bytes:
    """return our hello message"""
    hello = etree.Element(_nc('hello'), nsmap={None: NC_NS})
    caps = etree.SubElement(hello, _nc('capabilities'))
    for uri in capabilities:
        etree.SubElement(caps, _nc('capability')).text = uri
    return etree.tostring(hello, xml_declaration=True, encoding='UTF-8')

def parse_hello(wire:bytes) -> tuple:
    """return (capabilities, session_id) of the server hello

    Raises
    ------
    NegotiationError
        if the message is not a hello or advertises no base capability
    """
    try:
        root = etree.fromstring(wire, parser=_PARSER)
    except etree.XMLSyntaxError as exc:
        raise NegotiationError('malformed hello', additional_info=str(exc)) from exc
    if root.tag != _nc('hello'):
        raise NegotiationError(f'expected hello, got {root.tag}')
    capabilities = [c.text.strip() for c in root.iter(_nc('capability')) if c.text and c.text.strip()]
    session_id = root.findtext(_nc('session-id'))
    if not any(c in (BASE_10, BASE_11) for c in capabilities):
        raise NegotiationError('server hello advertises no netconf base capability')
    return capabilities, session_id.strip() if session_id else None

def module_namespaces(capabilities) -> dict:
    """return module name to namespace of all module capabilities (ns?module=name&revision=...)"""
    namespaces = {}
    for uri in capabilities:
        namespace, sep, query = uri.partition('?')
        if not sep:
            continue
        module = parse_qs(query).get('module')
        if module:
            namespaces[module[0]] = namespace
    return namespaces

def module_revisions(capabilities) -> list:
    """return (module, revision, namespace) of all module capabilities"""
    modules = []
    for uri in capabilities:
        namespace, sep, query = uri.partition('?')
        params = parse_qs(query) if sep else {}
        if 'module' in params:
            modules.append((params['module'][0], params.get('revision', [None])[0], namespace))
    return modules


class NetconfCodec(AbstractCodec):
    """xml codec of netconf

    Parameters
    ----------
    namespaces : dict
        top level element or module name to namespace
    """
    protocol = 'netconf'
    establishes_subscriptions = True

    def __init__(self, namespaces:dict=None):
        self._namespaces = dict(namespaces or {})
        self._qnames = {name: etree.QName(ns, name) for name, ns in self._namespaces.items()}

    @property
    def namespaces(self) -> dict:
        return dict(self._namespaces)

    # encode

    def encode_request(self, operation, capabilities, correlation_id:int) -> bytes:
        rpc = etree.Element(_nc('rpc'), nsmap={None: NC_NS})
        rpc.set('message-id', str(correlation_id))

        if isinstance(operation, GetOperation):
            self._encode_get(rpc, operation, capabilities)
        elif isinstance(operation, SetOperation):
            self._encode_set(rpc, operation, capabilities)
        elif isinstance(operation, SubscribeOperation):
            self._encode_subscribe(rpc, operation, capabilities)
        elif isinstance(operation, ControlOperation):
            self._encode_control(rpc, operation, capabilities)
        else:
            raise UnsupportedError(f'unknown operation {operation!r}')

        return etree.tostring(rpc, xml_declaration=True, encoding='UTF-8')

    def _encode_get(self, rpc, operation:GetOperation, capabilities) -> None:
        if operation.scope == Scope.CONFIG_ONLY:
            get = etree.SubElement(rpc, _nc('get-config'))
            source = etree.SubElement(get, _nc('source'))
            etree.SubElement(source, _nc(Datastore.RUNNING.value))
            self._encode_filter(get, operation.path, _nc('filter'), subtree=True)
        elif operation.scope == Scope.STATE_ONLY and capabilities.has(NMDA_NS):
            get = etree.SubElement(rpc, etree.QName(NMDA_NS, 'get-data'), nsmap={None: NMDA_NS, 'ds': DATASTORES_NS})
            etree.SubElement(get, etree.QName(NMDA_NS, 'datastore')).text = 'ds:operational'
            self._encode_filter(get, operation.path, etree.QName(NMDA_NS, 'subtree-filter'))
            etree.SubElement(get, etree.QName(NMDA_NS, 'config-filter')).text = 'false'
        else:
            get = etree.SubElement(rpc, _nc('get'))
            self._encode_filter(get, operation.path, _nc('filter'), subtree=True)

    def _encode_filter(self, parent, path, tag, subtree:bool=False) -> None:
        if path.is_root:
            return
        flt = etree.SubElement(parent, tag)
        if subtree:
            flt.set('type', 'subtree')
        self._build_path(flt, path)

    def _encode_set(self, rpc, operation:SetOperation, capabilities) -> None:
        self.check_set(operation, capabilities)
        datastore = operation.datastore or (Datastore.CANDIDATE if capabilities.candidate else Datastore.RUNNING)
        if datastore == Datastore.RUNNING and not capabilities.has(CAP_WRITABLE_RUNNING):
            raise UnsupportedError('running datastore is not writable and no candidate was negotiated')
        if datastore == Datastore.CANDIDATE and not capabilities.candidate:
            raise UnsupportedError('candidate datastore was not negotiated')

        edit_config = etree.SubElement(rpc, _nc('edit-config'))
        target = etree.SubElement(edit_config, _nc('target'))
        etree.SubElement(target, _nc(datastore.value))
        etree.SubElement(edit_config, _nc('default-operation')).text = 'merge'
        if capabilities.has(CAP_ROLLBACK_ON_ERROR):
            etree.SubElement(edit_config, _nc('error-option')).text = 'rollback-on-error'
        config = etree.SubElement(edit_config, _nc('config'))

        for edit in operation.edits:
            if edit.path.is_root:
                raise UnsupportedError('an edit-config needs a path below the root')
            node = self._build_path(config, edit.path)
            node.set(_nc('operation'), edit.merge_policy.value)
            if edit.merge_policy.needs_payload:
                text, children = self._payload(edit.payload, node, edit.path.last)
                if text is not None:
                    node.text = text
                for child in children:
                    node.append(child)

    def _encode_subscribe(self, rpc, operation:SubscribeOperation, capabilities) -> None:
        if not capabilities.supports_subscribe:
            raise UnsupportedError('yang-push subscriptions were not negotiated')
        establish = etree.SubElement(rpc, etree.QName(SN_NS, 'establish-subscription'),
                                     nsmap={None: SN_NS, 'yp': YP_NS, 'ds': DATASTORES_NS})
        etree.SubElement(establish, etree.QName(YP_NS, 'datastore')).text = 'ds:operational'
        self._encode_filter(establish, operation.path, etree.QName(YP_NS, 'datastore-subtree-filter'))
        if isinstance(operation.mode, Sample):
            periodic = etree.SubElement(establish, etree.QName(YP_NS, 'periodic'))
            # period is in centiseconds
            period = max(1, int(round(operation.mode.interval * 100)))
            etree.SubElement(periodic, etree.QName(YP_NS, 'period')).text = str(period)
        else:
            etree.SubElement(establish, etree.QName(YP_NS, 'on-change'))

    def _encode_control(self, rpc, operation:ControlOperation, capabilities) -> None:
        kind = operation.kind
        if kind == OperationKind.COMMIT:
            if not capabilities.supports_commit:
                raise self.unsupported(operation)
            commit = etree.SubElement(rpc, _nc('commit'))
            if operation.confirm_timeout is not None:
                if not capabilities.has(CAP_CONFIRMED_COMMIT):
                    raise UnsupportedError('confirmed commit was not negotiated')
                etree.SubElement(commit, _nc('confirmed'))
                etree.SubElement(commit, _nc('confirm-timeout')).text = str(int(operation.confirm_timeout))
        elif kind == OperationKind.DISCARD:
            if not capabilities.supports_commit:
                raise self.unsupported(operation)
            etree.SubElement(rpc, _nc('discard-changes'))
        elif kind in (OperationKind.LOCK, OperationKind.UNLOCK):
            datastore = operation.datastore or (Datastore.CANDIDATE if capabilities.candidate else Datastore.RUNNING)
            if datastore not in capabilities.datastores:
                raise UnsupportedError(f'datastore {datastore.value} was not negotiated')
            lock = etree.SubElement(rpc, _nc(kind.value))
            target = etree.SubElement(lock, _nc('target'))
            etree.SubElement(target, _nc(datastore.value))
        elif kind == OperationKind.UNSUBSCRIBE:
            delete = etree.SubElement(rpc, etree.QName(SN_NS, 'delete-subscription'), nsmap={None: SN_NS})
            etree.SubElement(delete, etree.QName(SN_NS, 'id')).text = str(operation.subscription_id)
        elif kind == OperationKind.CLOSE_SESSION:
            etree.SubElement(rpc, _nc('close-session'))
        else:
            raise self.unsupported(operation)

    def _namespace(self, elem, parent_ns:str) -> str:
        if elem.module:
            namespace = self._namespaces.get(elem.module)
            if namespace is None:
                raise UnsupportedError(f'no namespace known for module {elem.module}')
            return namespace
        if parent_ns:
            return parent_ns
        namespace = self._namespaces.get(elem.name)
        if namespace is None:
            raise UnsupportedError(f'no namespace known for top level element {elem.name}',
                                   additional_info='add it to Target.namespaces or qualify the path')
        return namespace

    def _qname(self, elem, parent_ns:str) -> etree.QName:
        if parent_ns is None and not elem.module and elem.name in self._qnames:
            return self._qnames[elem.name]
        return etree.QName(self._namespace(elem, parent_ns), elem.name)

    def _build_path(self, parent, path):
        """create (or reuse) the elements of path below parent and return the deepest one"""
        node = parent
        namespace = None
        for elem in path.elems:
            qname = self._qname(elem, namespace)
            child = self._find_entry(node, qname, elem)
            if child is None:
                nsmap = {None: qname.namespace} if qname.namespace != namespace else None
                child = etree.SubElement(node, qname, nsmap=nsmap)
                for key, value in elem.keys:
                    etree.SubElement(child, etree.QName(qname.namespace, key)).text = value
            node = child
            namespace = qname.namespace
        return node

    @staticmethod
    def _find_entry(parent, qname, elem):
        for candidate in parent.findall(qname):
            if all(candidate.findtext(etree.QName(qname.namespace, k)) == v for k, v in elem.keys):
                return candidate
        return None

    def _payload(self, payload:bytes, node, elem) -> tuple:
        """return (text, children) of the payload; text is the value of a leaf"""
        namespace = etree.QName(node).namespace
        payload = _XML_DECLARATION.sub(b'', payload)
        wrapper = b'<payload xmlns="' + namespace.encode() + b'">' + payload + b'</payload>'
        try:
            root = etree.fromstring(wrapper, parser=_PARSER)
        except etree.XMLSyntaxError as exc:
            raise DecodeError('payload is not well-formed XML', additional_info=str(exc)) from exc
        children = _children(root)
        if len(children) == 1 and children[0].tag == node.tag:
            root = children[0]
            children = _children(root)
        text = None if children else (root.text or '').strip() or None
        keys = dict(elem.keys)
        return text, [c for c in children
                      if not (_local(c) in keys and (c.text or '').strip() == keys[_local(c)])]

    # decode

    def correlation_id(self, wire):
        root = _parse(wire)
        if root.tag != _nc('rpc-reply'):
            return None
        message_id = root.get('message-id')
        if message_id is None:
            return None
        return int(message_id) if message_id.isdigit() else message_id

    def decode_response(self, wire, operation) -> tuple:
        root = _parse(wire)
        if root.tag != _nc('rpc-reply'):
            raise DecodeError(f'expected rpc-reply, got {root.tag}')
        message_id = root.get('message-id')
        correlation_id = int(message_id) if message_id and message_id.isdigit() else message_id
        self._raise_for_errors(root)

        if isinstance(operation, GetOperation):
            return self._decode_get(root, operation), correlation_id
        if isinstance(operation, SubscribeOperation):
            subscription_id = root.findtext(etree.QName(SN_NS, 'id'))
            if subscription_id is None:
                raise DecodeError('establish-subscription reply carries no subscription id')
            return Result(source=Source.STATE, path=operation.path,
                          metadata={'subscription_id': subscription_id.strip()}), correlation_id
        return Result(source=Source.CONFIG, path=getattr(operation, 'path', None),
                      metadata={'ok': root.find(_nc('ok')) is not None}), correlation_id

    def _raise_for_errors(self, root) -> None:
        errors = []
        for rpc_error in root.findall(_nc('rpc-error')):
            error = {
                'type': rpc_error.findtext(_nc('error-type')),
                'tag': rpc_error.findtext(_nc('error-tag')),
                'severity': rpc_error.findtext(_nc('error-severity')),
                'path': (rpc_error.findtext(_nc('error-path')) or '').strip() or None,
                'message': (rpc_error.findtext(_nc('error-message')) or '').strip() or None,
            }
            if error['severity'] == 'warning':
                logger.bind(extra="netconf").warning(f'rpc-warning {error["tag"]}: {error["message"]}')
                continue
            errors.append(error)
        if errors:
            first = errors[0]
            raise ServerRejectedError(f'rpc-error {first["tag"]}',
                                      server_message=first['message'],
                                      error_tag=first['tag'],
                                      metadata={'errors': errors})

    def _decode_get(self, root, operation:GetOperation) -> Result:
        data = root.find(_nc('data'))
        source = Source.CONFIG if operation.scope == Scope.CONFIG_ONLY else Source.MIXED
        if data is None:
            data = root.find(etree.QName(NMDA_NS, 'data'))
            source = Source.STATE
        if data is None:
            raise NodeNotFoundError('reply carries no data element')

        path = operation.path
        self._locate(data, path)
        list_names = {e.name for e in path.elems if e.keys}
        tree = to_tree(data, list_names) if _children(data) else {}
        metadata = {}
        if operation.scope == Scope.STATE_ONLY and source == Source.MIXED:
            metadata['scope_degraded'] = True
        return Result(data=tree, source=source, path=path, metadata=metadata)

    def _locate(self, data, path):
        """walk path using qualified names; raise NodeNotFoundError on the first mismatch"""
        node = data
        namespace = None
        for elem in path.elems:
            qname = self._qname(elem, namespace)
            found = self._find_entry(node, qname, elem)
            if found is None:
                raise NodeNotFoundError(f'node {{{qname.namespace}}}{qname.localname} not found',
                                        additional_info=f'path {path}')
            node = found
            namespace = qname.namespace
        return node

    # notifications

    def is_stream_update(self, wire) -> bool:
        return _parse(wire).tag == etree.QName(NOTIFICATION_NS, 'notification')

    def _event(self, root):
        for child in _children(root):
            if child.tag != etree.QName(NOTIFICATION_NS, 'eventTime'):
                return child
        return None

    def stream_key(self, wire):
        event = self._event(_parse(wire))
        if event is None:
            return None
        subscription_id = event.find('{*}id')
        return subscription_id.text.strip() if subscription_id is not None and subscription_id.text else None

    def is_stream_end(self, wire) -> bool:
        event = self._event(_parse(wire))
        return event is not None and _local(event) in STREAM_END_EVENTS

    def decode_stream_update(self, wire):
        root = _parse(wire)
        if root.tag != etree.QName(NOTIFICATION_NS, 'notification'):
            raise DecodeError(f'expected notification, got {root.tag}')
        event_time = root.findtext(etree.QName(NOTIFICATION_NS, 'eventTime'))
        event = self._event(root)
        if event is None:
            return None

        name = _local(event)
        metadata = {'event': name}
        if event_time:
            metadata['event_time'] = event_time.strip()
        if name == 'push-update':
            contents = event.find(etree.QName(YP_NS, 'datastore-contents'))
            data = to_tree(contents, set()) if contents is not None and _children(contents) else {}
        elif name == 'push-change-update':
            changes = event.find(etree.QName(YP_NS, 'datastore-changes'))
            data = to_tree(changes, {'edit'}) if changes is not None and _children(changes) else {}
        elif etree.QName(event).namespace == SN_NS:
            # subscription-started, -modified, -suspended, -resumed
            return None
        else:
            data = {name: to_tree(event, set())}

        subscription_id = event.findtext('{*}id')
        if subscription_id:
            metadata['subscription_id'] = subscription_id.strip()
        return Result(data=data if isinstance(data, dict) else {name: data},
                      source=Source.STATE, timestamp=_timestamp(event_time), metadata=metadata)


def _timestamp(event_time:str) -> int | None:
    if not event_time:
        return None
    try:
        moment = datetime.fromisoformat(event_time.strip().replace('Z', '+00:00'))
    except ValueError:
        return None
    return int(moment.timestamp() * 1_000_000_000)
