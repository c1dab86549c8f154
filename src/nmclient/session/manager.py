"""session manager and capability negotiation

negotiation is protocol specific:

protocol | handshake
---------|-------------------------------------------------------------
netconf  | hello exchange, base:1.1 chunked framing if both sides support it
restconf | /.well-known/host-meta, then the restconf-state capabilities
gnmi     | Capabilities rpc
cli      | none, the capabilities are declared by the target

A failed handshake closes the transport and raises NegotiationError; no
session is returned.
"""
from loguru import logger

from nmclient.codec import netconf, restconf, gnmi
from nmclient.codec.cli import CliCodec
from nmclient.model.capabilities import Capabilities, Datastore, ModelData
from nmclient.model.operation import MergePolicy, Encoding
from nmclient.model.target import Protocol
from nmclient.session.session import Session
from nmclient.transport.framing import ChunkedFramer
from nmclient.transport.ssh import SshTransport
from nmclient.transport.http import HttpTransport
from nmclient.transport.grpc import GrpcTransport
from nmclient.transport.cli import CliTransport
from nmclient.tools.exceptions import NmclientError, DecodeError, NegotiationError, ServerRejectedError

CLIENT_CAPABILITIES = (netconf.BASE_10, netconf.BASE_11)


def create_transport(target):
    """return the (not connected) transport of target"""
    if target.protocol == Protocol.NETCONF:
        return SshTransport(target)
    if target.protocol == Protocol.RESTCONF:
        return HttpTransport(target)
    if target.protocol == Protocol.GNMI:
        return GrpcTransport(target)
    return CliTransport(target)


def negotiate_netconf(target, transport, timeout:float=None) -> tuple:
    transport.send(netconf.build_hello(CLIENT_CAPABILITIES), timeout=timeout)
    try:
        features, session_id = netconf.parse_hello(transport.receive(timeout=timeout))
    except DecodeError as exc:
        raise NegotiationError('could not read the server hello', additional_info=str(exc)) from exc

    if netconf.BASE_11 in features:
        transport.set_framing(ChunkedFramer())
        version = '1.1'
    else:
        version = '1.0'

    namespaces = netconf.module_namespaces(features)
    namespaces.update(target.namespaces)

    datastores = {Datastore.RUNNING}
    if netconf.CAP_CANDIDATE in features:
        datastores.add(Datastore.CANDIDATE)
    if netconf.CAP_STARTUP in features:
        datastores.add(Datastore.STARTUP)
    nmda = any(f.startswith(netconf.NMDA_NS) for f in features)
    if nmda:
        datastores.add(Datastore.OPERATIONAL)
    rollback = netconf.CAP_ROLLBACK_ON_ERROR in features
    subscribe = (any(f.startswith(netconf.YP_NS) for f in features)
                 and any(f.startswith(netconf.SN_NS) for f in features))

    models = tuple(ModelData(name=name, version=revision, namespace=ns)
                   for name, revision, ns in netconf.module_revisions(features))
    capabilities = Capabilities(protocol=Protocol.NETCONF,
                                features=frozenset(features),
                                encodings=(Encoding.XML,),
                                merge_policies=frozenset(MergePolicy),
                                datastores=frozenset(datastores),
                                supports_lock=True,
                                supports_commit=Datastore.CANDIDATE in datastores,
                                supports_subscribe=subscribe,
                                supports_atomic_set=Datastore.CANDIDATE in datastores or rollback,
                                models=models,
                                version=version,
                                session_id=session_id,
                                extras={'namespaces': namespaces})
    logger.bind(extra="manager").info(f'netconf session {session_id} to {target.address} base:{version} '
                                      f'candidate={capabilities.candidate} nmda={nmda}')
    return capabilities, netconf.NetconfCodec(namespaces)


def negotiate_restconf(target, transport, timeout:float=None) -> tuple:
    try:
        api_root = restconf.parse_host_meta(transport.exchange(restconf.discovery_request(), timeout=timeout))
        features = restconf.parse_capabilities(
            transport.exchange(restconf.capabilities_request(api_root), timeout=timeout))
        models = restconf.parse_yang_library(
            transport.exchange(restconf.yang_library_request(api_root), timeout=timeout))
    except DecodeError as exc:
        raise NegotiationError('malformed restconf discovery response', additional_info=str(exc)) from exc

    names = {m.name for m in models}
    subscribe = (any('subscribed-notifications' in f or 'yang-push' in f for f in features)
                 or 'ietf-subscribed-notifications' in names)
    capabilities = Capabilities(protocol=Protocol.RESTCONF,
                                features=frozenset(features),
                                encodings=(Encoding.JSON, Encoding.XML),
                                merge_policies=frozenset(MergePolicy),
                                datastores=frozenset({Datastore.RUNNING, Datastore.OPERATIONAL}),
                                supports_subscribe=subscribe,
                                supports_atomic_set=restconf.CAP_YANG_PATCH in features,
                                models=tuple(models),
                                version=api_root,
                                extras={'api_root': api_root})
    logger.bind(extra="manager").info(f'restconf root {api_root} on {target.address} '
                                      f'{len(features)} capabilities')
    return capabilities, restconf.RestconfCodec(api_root, target.modules)


def negotiate_gnmi(target, transport, timeout:float=None) -> tuple:
    transport.send(gnmi.capabilities_call(), timeout=timeout)
    try:
        models, encodings, version = gnmi.parse_capabilities(transport.receive(timeout=timeout))
    except ServerRejectedError as exc:
        raise NegotiationError('gnmi Capabilities rpc failed', additional_info=str(exc)) from exc

    capabilities = Capabilities(protocol=Protocol.GNMI,
                                features=frozenset(m.name for m in models),
                                encodings=encodings,
                                merge_policies=frozenset({MergePolicy.MERGE, MergePolicy.REPLACE,
                                                          MergePolicy.REMOVE}),
                                datastores=frozenset({Datastore.RUNNING, Datastore.OPERATIONAL}),
                                supports_subscribe=True,
                                supports_atomic_set=True,
                                models=models,
                                version=version)
    logger.bind(extra="manager").info(f'gnmi {version} on {target.address} '
                                      f'encodings={[e.value for e in encodings]}')
    return capabilities, gnmi.GnmiCodec()


def negotiate_cli(target, transport, timeout:float=None) -> tuple:
    capabilities = Capabilities(protocol=Protocol.CLI,
                                features=frozenset(target.cli_capabilities),
                                encodings=(Encoding.ASCII,),
                                merge_policies=frozenset({MergePolicy.MERGE}),
                                datastores=frozenset({Datastore.RUNNING}),
                                version='cli')
    platform = f'{target.manufacturer}_{target.platform or "ios"}' if target.cli_parse else None
    return capabilities, CliCodec(platform=platform)


NEGOTIATORS = {Protocol.NETCONF: negotiate_netconf,
               Protocol.RESTCONF: negotiate_restconf,
               Protocol.GNMI: negotiate_gnmi,
               Protocol.CLI: negotiate_cli}


class SessionManager:
    """connects transports and negotiates sessions

    Parameters
    ----------
    transport_factory : callable, optional
        returns the transport of a target, by default create_transport
    """

    def __init__(self, transport_factory=None):
        self._transport_factory = transport_factory or create_transport

    def open(self, target, transport=None, timeout:float=None) -> Session:
        """connect, negotiate and return a started Session

        Raises
        ------
        ConnectError, TLSError, OperationTimeout
            if the transport could not be connected
        NegotiationError
            if the handshake failed
        """
        timeout = timeout if timeout is not None else target.timeout
        transport = transport if transport is not None else self._transport_factory(target)
        logger.bind(extra="manager").debug(f'opening {target.protocol.value} session to {target.address}')
        try:
            if not transport.connected:
                transport.connect(timeout=timeout)
            capabilities, codec = NEGOTIATORS[target.protocol](target, transport, timeout=timeout)
        except NmclientError:
            transport.close()
            raise

        session = Session(target, transport, codec, capabilities)
        session.start()
        return session
