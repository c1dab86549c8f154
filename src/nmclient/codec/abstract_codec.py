from abc import ABC, abstractmethod

from nmclient.model.operation import SetOperation, OperationKind
from nmclient.tools.exceptions import UnsupportedError


class AbstractCodec(ABC):
    """abstract class of a protocol codec

    A codec translates operations into wire messages and wire messages into
    Results. It is immutable after construction and needs no locking.

    The wire message type depends on the transport: bytes (netconf),
    HttpRequest/HttpResponse (restconf), GrpcCall/GrpcReply (gnmi) and
    CliCommand/CliReply (cli).
    """
    protocol = None
    # subscriptions are created by an rpc (establish-subscription) before updates flow
    establishes_subscriptions = False

    @abstractmethod
    def encode_request(self, operation, capabilities, correlation_id:int):
        """return the wire message of operation

        Raises
        ------
        UnsupportedError
            if merge policy, encoding or operation is not in capabilities
        """

    @abstractmethod
    def decode_response(self, wire, operation) -> tuple:
        """return (Result, correlation_id) of a reply to operation

        server reported errors are raised using the shared taxonomy
        """

    @abstractmethod
    def correlation_id(self, wire):
        """return the correlation id of a reply (None if it has none)"""

    def decode_stream_update(self, wire):
        """return the Result of one stream update or None for control messages"""
        raise UnsupportedError(f'{self.protocol} does not support subscriptions')

    def is_stream_update(self, wire) -> bool:
        """True if wire is an unsolicited message (notification) and not a reply"""
        return False

    def stream_key(self, wire):
        """return the subscription id of a stream update"""
        return None

    def is_stream_end(self, wire) -> bool:
        """True if the server ended the stream with this message"""
        return False

    def stream_request(self, uri:str):
        """return the wire message that opens the stream of an established subscription"""
        raise UnsupportedError(f'{self.protocol} has no separate subscription streams')

    def check_set(self, operation:SetOperation, capabilities) -> None:
        """verify merge policies and encodings of all edits against capabilities"""
        for edit in operation.edits:
            if not capabilities.supports_merge_policy(edit.merge_policy):
                raise UnsupportedError(f'merge policy {edit.merge_policy.value} is not supported by {self.protocol}',
                                       additional_info=f'path {edit.path}')
            if edit.merge_policy.needs_payload and not capabilities.supports_encoding(edit.encoding):
                raise UnsupportedError(f'encoding {edit.encoding.value} is not supported by {self.protocol}',
                                       additional_info=f'negotiated {[e.value for e in capabilities.encodings]}')

    def unsupported(self, operation):
        kind = operation.kind.value if isinstance(operation.kind, OperationKind) else operation.kind
        return UnsupportedError(f'{kind} is not supported by {self.protocol}')
