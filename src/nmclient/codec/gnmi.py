"""gNMI protobuf codec (gNMI 0.8)

Paths are converted to gNMI PathElem lists; module qualified elements keep
their prefix ('openconfig-interfaces:interfaces') and the origin of a Path
becomes the gNMI origin. Decoding prefix + path gives back the same Path.
"""
import json
from loguru import logger
from pygnmi.spec.v080 import gnmi_pb2

from nmclient.codec.abstract_codec import AbstractCodec
from nmclient.model.capabilities import ModelData
from nmclient.model.operation import (GetOperation, SetOperation, SubscribeOperation, ControlOperation,
                                      Scope, MergePolicy, Encoding, Sample)
from nmclient.model.path import Path, PathElem
from nmclient.model.result import Result, Source, normalize, insert
from nmclient.transport.grpc import GrpcCall, GrpcReply
from nmclient.tools.exceptions import DecodeError, NodeNotFoundError, ServerRejectedError, UnsupportedError

# gnmi encoding enum to our Encoding; BYTES has no counterpart
ENCODINGS = {gnmi_pb2.Encoding.Value('JSON'): Encoding.JSON,
             gnmi_pb2.Encoding.Value('PROTO'): Encoding.PROTO,
             gnmi_pb2.Encoding.Value('ASCII'): Encoding.ASCII,
             gnmi_pb2.Encoding.Value('JSON_IETF'): Encoding.JSON_IETF}
GNMI_ENCODINGS = {v: k for k, v in ENCODINGS.items()}
# most preferred first
ENCODING_PREFERENCE = (Encoding.JSON_IETF, Encoding.JSON, Encoding.PROTO, Encoding.ASCII)

DATA_TYPES = {Scope.CONFIG_ONLY: gnmi_pb2.GetRequest.CONFIG,
              Scope.STATE_ONLY: gnmi_pb2.GetRequest.STATE,
              Scope.BOTH: gnmi_pb2.GetRequest.ALL}
SOURCE = {Scope.CONFIG_ONLY: Source.CONFIG, Scope.STATE_ONLY: Source.STATE, Scope.BOTH: Source.MIXED}


def to_gnmi_path(path:Path) -> gnmi_pb2.Path:
    elems = []
    for elem in path.elems:
        name = f'{elem.module}:{elem.name}' if elem.module else elem.name
        elems.append(gnmi_pb2.PathElem(name=name, key=dict(elem.keys)))
    return gnmi_pb2.Path(origin=path.origin or '', elem=elems)

def from_gnmi_path(path:gnmi_pb2.Path, prefix:gnmi_pb2.Path=None) -> Path:
    elems = []
    origin = path.origin or None
    for part in ((prefix,) if prefix is not None else ()) + (path,):
        origin = origin or part.origin or None
        for elem in part.elem:
            module, sep, name = elem.name.rpartition(':')
            elems.append(PathElem(name if sep else elem.name,
                                  keys=sorted(elem.key.items()),
                                  module=module if sep else None))
    return Path(tuple(elems), origin=origin)

def decode_value(value:gnmi_pb2.TypedValue):
    """return the python value of a TypedValue"""
    kind = value.WhichOneof('value')
    if kind is None:
        return None
    if kind in ('json_val', 'json_ietf_val'):
        raw = getattr(value, kind)
        if not raw:
            return None
        try:
            return normalize(json.loads(raw))
        except ValueError as exc:
            raise DecodeError(f'invalid {kind}', additional_info=str(exc)) from exc
    if kind == 'leaflist_val':
        return [decode_value(v) for v in value.leaflist_val.element]
    if kind == 'decimal_val':
        return value.decimal_val.digits / (10 ** value.decimal_val.precision)
    if kind == 'any_val':
        return value.any_val.value
    return getattr(value, kind)

def encode_value(payload:bytes, encoding:Encoding) -> gnmi_pb2.TypedValue:
    if encoding.is_json:
        try:
            json.loads(payload)
        except ValueError as exc:
            raise DecodeError('payload is not valid JSON', additional_info=str(exc)) from exc
    if encoding == Encoding.JSON:
        return gnmi_pb2.TypedValue(json_val=payload)
    if encoding == Encoding.JSON_IETF:
        return gnmi_pb2.TypedValue(json_ietf_val=payload)
    if encoding == Encoding.ASCII:
        try:
            return gnmi_pb2.TypedValue(ascii_val=payload.decode('ascii'))
        except UnicodeDecodeError as exc:
            raise DecodeError('ascii payload contains non ascii bytes', additional_info=str(exc)) from exc
    if encoding == Encoding.PROTO:
        return gnmi_pb2.TypedValue(proto_bytes=payload)
    raise UnsupportedError(f'encoding {encoding.value} can not be sent with gnmi')


# capabilities

def capabilities_call() -> GrpcCall:
    return GrpcCall(method='Capabilities', request=gnmi_pb2.CapabilityRequest())

def parse_capabilities(reply:GrpcReply) -> tuple:
    """return (models, encodings, version) of a CapabilityResponse

    encodings are sorted by our preference; a target that announces none is
    assumed to speak JSON.
    """
    if not reply.ok:
        raise ServerRejectedError(f'Capabilities failed ({reply.code})', server_message=reply.details,
                                  error_tag=reply.code)
    response = reply.message
    models = tuple(ModelData(name=m.name, organization=m.organization or None, version=m.version or None)
                   for m in response.supported_models)
    announced = {ENCODINGS[e] for e in response.supported_encodings if e in ENCODINGS}
    if not announced:
        announced = {Encoding.JSON}
    encodings = tuple(e for e in ENCODING_PREFERENCE if e in announced)
    return models, encodings, response.gNMI_version or None


class GnmiCodec(AbstractCodec):
    """protobuf codec of gnmi"""
    protocol = 'gnmi'

    def _encoding(self, capabilities) -> int:
        for encoding in ENCODING_PREFERENCE:
            if capabilities.supports_encoding(encoding):
                return GNMI_ENCODINGS[encoding]
        raise UnsupportedError('no usable gnmi encoding was negotiated')

    # encode

    def encode_request(self, operation, capabilities, correlation_id:int) -> GrpcCall:
        if isinstance(operation, GetOperation):
            request = gnmi_pb2.GetRequest(path=[to_gnmi_path(operation.path)],
                                          type=DATA_TYPES[operation.scope],
                                          encoding=self._encoding(capabilities))
            return GrpcCall(method='Get', request=request, correlation_id=correlation_id)

        if isinstance(operation, SetOperation):
            self.check_set(operation, capabilities)
            request = gnmi_pb2.SetRequest()
            for edit in operation.edits:
                path = to_gnmi_path(edit.path)
                if edit.merge_policy == MergePolicy.REMOVE:
                    request.delete.append(path)
                    continue
                update = gnmi_pb2.Update(path=path, val=encode_value(edit.payload, edit.encoding))
                if edit.merge_policy == MergePolicy.REPLACE:
                    request.replace.append(update)
                else:
                    request.update.append(update)
            return GrpcCall(method='Set', request=request, correlation_id=correlation_id)

        if isinstance(operation, SubscribeOperation):
            if not capabilities.supports_subscribe:
                raise self.unsupported(operation)
            subscription = gnmi_pb2.Subscription(path=to_gnmi_path(operation.path))
            if isinstance(operation.mode, Sample):
                subscription.mode = gnmi_pb2.SubscriptionMode.Value('SAMPLE')
                subscription.sample_interval = int(operation.mode.interval * 1_000_000_000)
            else:
                subscription.mode = gnmi_pb2.SubscriptionMode.Value('ON_CHANGE')
                if operation.mode.heartbeat:
                    subscription.heartbeat_interval = int(operation.mode.heartbeat * 1_000_000_000)
            subscriptions = gnmi_pb2.SubscriptionList(subscription=[subscription],
                                                      mode=gnmi_pb2.SubscriptionList.STREAM,
                                                      encoding=self._encoding(capabilities))
            return GrpcCall(method='Subscribe', request=gnmi_pb2.SubscribeRequest(subscribe=subscriptions),
                            correlation_id=correlation_id)

        if isinstance(operation, ControlOperation):
            raise self.unsupported(operation)
        raise UnsupportedError(f'unknown operation {operation!r}')

    # decode

    def correlation_id(self, wire:GrpcReply):
        return wire.call.correlation_id if wire.call is not None else None

    def _raise_for_status(self, wire:GrpcReply, operation=None) -> None:
        if wire.ok:
            return
        method = wire.call.method if wire.call is not None else 'Subscribe'
        if wire.code == 'NOT_FOUND' and isinstance(operation, GetOperation):
            raise NodeNotFoundError(f'path {operation.path} not found', additional_info=wire.details)
        raise ServerRejectedError(f'{method} failed ({wire.code})', server_message=wire.details,
                                  error_tag=wire.code)

    def decode_response(self, wire:GrpcReply, operation) -> tuple:
        correlation_id = self.correlation_id(wire)
        self._raise_for_status(wire, operation)
        message = wire.message

        if isinstance(operation, GetOperation):
            tree = {}
            timestamp = None
            found = False
            for notification in message.notification:
                if notification.timestamp:
                    timestamp = max(timestamp or 0, notification.timestamp)
                for update in notification.update:
                    insert(tree, from_gnmi_path(update.path, notification.prefix), decode_value(update.val))
                    found = True
            if not found:
                raise NodeNotFoundError(f'path {operation.path} returned no updates')
            return Result(data=tree, source=SOURCE[operation.scope], path=operation.path,
                          timestamp=timestamp), correlation_id

        if isinstance(operation, SetOperation):
            results = [(str(from_gnmi_path(r.path, message.prefix)), gnmi_pb2.UpdateResult.Operation.Name(r.op))
                       for r in message.response]
            return Result(source=Source.CONFIG, path=operation.path, timestamp=message.timestamp or None,
                          metadata={'results': results}), correlation_id

        return Result(), correlation_id

    def decode_stream_update(self, wire):
        if isinstance(wire, GrpcReply):
            self._raise_for_status(wire)
            return None
        kind = wire.WhichOneof('response')
        if kind == 'sync_response':
            logger.bind(extra="gnmi").debug('subscription sync_response received')
            return None
        if kind == 'error':
            raise ServerRejectedError('subscription failed', server_message=wire.error.message,
                                      error_tag=str(wire.error.code))
        if kind != 'update':
            raise DecodeError(f'unexpected subscribe response {kind}')

        notification = wire.update
        tree = {}
        paths = []
        for update in notification.update:
            path = from_gnmi_path(update.path, notification.prefix)
            insert(tree, path, decode_value(update.val))
            paths.append(path)
        metadata = {}
        if notification.delete:
            metadata['deleted'] = [str(from_gnmi_path(p, notification.prefix)) for p in notification.delete]
        return Result(data=tree, source=Source.STATE, path=paths[0] if paths else None,
                      timestamp=notification.timestamp or None, metadata=metadata)
