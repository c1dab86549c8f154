from dataclasses import dataclass, field
from enum import Enum


class Protocol(Enum):
    NETCONF = "netconf"
    RESTCONF = "restconf"
    GNMI = "gnmi"
    CLI = "cli"


class TransportKind(Enum):
    SSH = "ssh"
    HTTPS = "https"
    GRPC = "grpc"


_TRANSPORTS = {
    Protocol.NETCONF: TransportKind.SSH,
    Protocol.CLI: TransportKind.SSH,
    Protocol.RESTCONF: TransportKind.HTTPS,
    Protocol.GNMI: TransportKind.GRPC,
}

DEFAULT_PORTS = {
    Protocol.NETCONF: 830,
    Protocol.RESTCONF: 443,
    Protocol.GNMI: 57400,
    Protocol.CLI: 22,
}


@dataclass(frozen=True)
class Credentials:
    """credential handle of a target

    The password and passphrase are never part of the repr.
    """
    username: str = None
    password: str = field(default=None, repr=False)
    ssh_key: str = None
    ssh_passphrase: str = field(default=None, repr=False)


@dataclass(frozen=True)
class Target:
    """a device and the way we talk to it

    Parameters
    ----------
    host : str
        hostname or ip address
    protocol : Protocol
        netconf, restconf, gnmi or cli
    port : int, optional
        defaults to the well known port of the protocol
    credentials : Credentials
        username, password and ssh key
    verify : bool
        verify TLS certificates (https, grpc) or ssh host keys (netconf, cli)
    ca_file : str
        CA bundle used to verify TLS certificates
    known_hosts : str
        known_hosts file used to verify ssh host keys
    use_tls : bool
        use TLS for https and grpc; plain text for lab devices otherwise
    tls_server_name : str
        override the name used to verify the server certificate
    timeout : float
        default timeout of connect and of each operation
    read_timeout : float
        read deadline of the ssh stream; None disables it
    keepalive : int
        ssh keepalive interval in seconds
    namespaces : dict
        top level element or module name to XML namespace (netconf)
    modules : dict
        top level element to YANG module name (restconf)
    platform : str
        cli platform (ios, iosxr, nxos, eos, junos)
    manufacturer : str
        used to select ntc_templates
    cli_parse : bool
        parse cli output using TextFSM templates
    cli_capabilities : tuple
        features the cli device is declared to support
    """
    host: str
    protocol: Protocol
    port: int = None
    credentials: Credentials = field(default_factory=Credentials)
    verify: bool = True
    ca_file: str = None
    known_hosts: str = None
    use_tls: bool = True
    tls_server_name: str = None
    timeout: float = 30.0
    read_timeout: float = None
    keepalive: int = 30
    namespaces: dict = field(default_factory=dict, compare=False)
    modules: dict = field(default_factory=dict, compare=False)
    platform: str = None
    manufacturer: str = 'cisco'
    cli_parse: bool = False
    cli_capabilities: tuple = ()

    def __post_init__(self):
        if not isinstance(self.protocol, Protocol):
            object.__setattr__(self, 'protocol', Protocol(str(self.protocol).lower()))
        if self.port is None:
            object.__setattr__(self, 'port', DEFAULT_PORTS[self.protocol])
        if not self.host:
            raise ValueError('host must not be empty')

    @property
    def transport(self) -> TransportKind:
        return _TRANSPORTS[self.protocol]

    @property
    def address(self) -> str:
        return f'{self.host}:{self.port}'
