"""NETCONF over SSH (RFC 6242)

The transport opens the "netconf" subsystem and frames messages with the
end-of-message marker until the hello exchange selected base:1.1, then
switches to chunked framing (see set_framing).
"""
import socket
import threading
import paramiko
from loguru import logger

from nmclient.transport.abstract_transport import AbstractTransport
from nmclient.transport.framing import EndOfMessageFramer
from nmclient.tools.exceptions import ConnectError, TLSError, OperationTimeout


class _RejectUnknownHost(paramiko.MissingHostKeyPolicy):
    """raise TLSError if the host key is unknown"""

    def missing_host_key(self, client, hostname, key):
        raise TLSError(f'host key of {hostname} not found in known_hosts',
                       additional_info=f'{key.get_name()} {key.get_base64()[:16]}...')


class SshTransport(AbstractTransport):
    """netconf ssh subsystem transport based on paramiko

    Parameters
    ----------
    target : Target
        the device to connect to
    subsystem : str, optional
        the ssh subsystem, by default netconf
    """
    streaming = True
    clean_abandon = False
    recv_size = 16384

    def __init__(self, target, subsystem:str='netconf'):
        super().__init__(target)
        self._subsystem = subsystem
        self._client = None
        self._channel = None
        self._framer = EndOfMessageFramer()
        self._send_lock = threading.Lock()

    @property
    def framer(self):
        return self._framer

    def set_framing(self, framer) -> None:
        """switch framing (after the hello exchange); buffered bytes move to the new framer"""
        pending = self._framer.pending()
        self._framer = framer
        if pending:
            framer.feed(pending)
        logger.bind(extra="ssh").debug(f'switched to base:{framer.version} framing')

    def connect(self, timeout:float=None) -> None:
        timeout = timeout if timeout is not None else self._target.timeout
        target = self._target
        creds = target.credentials

        client = paramiko.SSHClient()
        if target.verify:
            client.load_system_host_keys()
            if target.known_hosts:
                client.load_host_keys(target.known_hosts)
            client.set_missing_host_key_policy(_RejectUnknownHost())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        logger.bind(extra="ssh").debug(f'opening ssh connection to {target.address} user={creds.username}')
        try:
            client.connect(hostname=target.host,
                           port=target.port,
                           username=creds.username,
                           password=creds.password,
                           key_filename=creds.ssh_key,
                           passphrase=creds.ssh_passphrase,
                           timeout=timeout,
                           banner_timeout=timeout,
                           auth_timeout=timeout,
                           allow_agent=False,
                           look_for_keys=False)
            transport = client.get_transport()
            if target.keepalive:
                transport.set_keepalive(target.keepalive)
            channel = transport.open_session(timeout=timeout)
            channel.invoke_subsystem(self._subsystem)
        except TLSError:
            client.close()
            raise
        except paramiko.BadHostKeyException as exc:
            client.close()
            raise TLSError(f'host key of {target.host} does not match', additional_info=str(exc)) from exc
        except paramiko.AuthenticationException as exc:
            client.close()
            raise ConnectError(f'authentication to {target.address} failed', additional_info=str(exc)) from exc
        except socket.timeout as exc:
            client.close()
            raise OperationTimeout(f'connect to {target.address} timed out after {timeout}s') from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ConnectError(f'could not connect to {target.address}', additional_info=str(exc)) from exc

        channel.settimeout(target.read_timeout)
        self._client = client
        self._channel = channel
        self._connected = True
        logger.bind(extra="ssh").debug(f'{self._subsystem} subsystem on {target.address} opened')

    def send(self, message:bytes, timeout:float=None) -> None:
        self._check_open()
        data = self._framer.frame(message)
        with self._send_lock:
            try:
                self._channel.sendall(data)
            except socket.timeout as exc:
                self.close()
                raise OperationTimeout(f'write to {self._target.address} timed out') from exc
            except (paramiko.SSHException, OSError) as exc:
                self.close()
                raise ConnectError(f'write to {self._target.address} failed', additional_info=str(exc)) from exc

    def receive(self, timeout:float=None) -> bytes:
        """return the next complete message

        timeout (or the read deadline of the target) applies; once it elapsed
        the transport is closed because the stream state is unknown.
        """
        self._check_open()
        self._channel.settimeout(timeout if timeout is not None else self._target.read_timeout)
        while True:
            message = self._framer.next_message()
            if message is not None:
                return message
            try:
                chunk = self._channel.recv(self.recv_size)
            except socket.timeout as exc:
                self.close()
                raise OperationTimeout(f'read from {self._target.address} timed out') from exc
            except (paramiko.SSHException, OSError) as exc:
                if self._closed:
                    raise ConnectError(f'connection to {self._target.address} closed') from exc
                self.close()
                raise ConnectError(f'read from {self._target.address} failed', additional_info=str(exc)) from exc
            if not chunk:
                self.close()
                raise ConnectError(f'connection closed by {self._target.address}')
            self._framer.feed(chunk)

    def _release(self) -> None:
        if self._channel is not None:
            self._channel.close()
        if self._client is not None:
            self._client.close()
