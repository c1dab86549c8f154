"""error taxonomy shared by all protocols

Every exception raised by nmclient is a subclass of NmclientError and carries
a kind. Callers should branch on the kind (or the class) and never on the
protocol specific message text.
"""
from enum import Enum


class ErrorKind(Enum):
    CONNECT = "connect"
    TLS = "tls"
    TIMEOUT = "timeout"
    NEGOTIATION = "negotiation"
    UNSUPPORTED = "unsupported"
    NODE_NOT_FOUND = "node_not_found"
    SERVER_REJECTED = "server_rejected"
    CLOSED = "closed"
    OVERFLOW = "overflow"
    CANCELLED = "cancelled"
    DECODE = "decode"


class NmclientError(Exception):
    """Base class of all nmclient exceptions

    Parameters
    ----------
    message : str
        the error message
    additional_info : str, optional
        appended to the message
    metadata : dict, optional
        structured diagnostics (eg. applied/atomic for a failed set)
    """
    kind = None

    def __init__(self, message, additional_info=None, metadata=None):
        if additional_info is None:
            super().__init__(message)
        else:
            message = f'{message} - {additional_info}'
            super().__init__(message)
        self.metadata = dict(metadata) if metadata else {}

    @property
    def cause(self):
        """the wrapped protocol or library exception (if any)"""
        return self.__cause__


class ConnectError(NmclientError):
    """Exception raised on network or authentication failures
    """
    kind = ErrorKind.CONNECT


class TLSError(NmclientError):
    """Exception raised if a certificate or host key could not be verified
    """
    kind = ErrorKind.TLS


class OperationTimeout(NmclientError, TimeoutError):
    """Exception raised if a deadline elapsed
    """
    kind = ErrorKind.TIMEOUT


class NegotiationError(NmclientError):
    """Exception raised if the capability handshake failed
    """
    kind = ErrorKind.NEGOTIATION


class UnsupportedError(NmclientError):
    """Exception raised if encoding, merge policy or operation is not in the negotiated capabilities
    """
    kind = ErrorKind.UNSUPPORTED


class NodeNotFoundError(NmclientError):
    """Exception raised if a node (or its namespace) is missing in a response
    """
    kind = ErrorKind.NODE_NOT_FOUND


class ServerRejectedError(NmclientError):
    """Exception raised if the device reported a failure

    Parameters
    ----------
    message : str
        the error message
    server_message : str, optional
        the raw diagnostic text sent by the device
    error_tag : str, optional
        rpc-error tag, restconf error-tag or grpc status name
    status : int, optional
        http status (restconf) or grpc status code (gnmi)
    """
    kind = ErrorKind.SERVER_REJECTED

    def __init__(self, message, server_message=None, error_tag=None, status=None, metadata=None):
        super().__init__(message,
                         additional_info=server_message if server_message else None,
                         metadata=metadata)
        self.server_message = server_message
        self.error_tag = error_tag
        self.status = status


class ClosedError(NmclientError):
    """Exception raised if the client or session is already closed
    """
    kind = ErrorKind.CLOSED


class SubscriptionOverflow(NmclientError):
    """Exception raised if updates were dropped because the buffer was full
    """
    kind = ErrorKind.OVERFLOW

    def __init__(self, message, dropped=0):
        super().__init__(message, metadata={'dropped': dropped})
        self.dropped = dropped


class OperationCancelled(NmclientError):
    """Exception raised if the context was cancelled before a reply arrived
    """
    kind = ErrorKind.CANCELLED


class DecodeError(NmclientError):
    """Exception raised if a wire payload could not be parsed
    """
    kind = ErrorKind.DECODE


def is_transport_error(exc):
    """return True if exc makes the transport unusable"""
    return isinstance(exc, (ConnectError, TLSError))
