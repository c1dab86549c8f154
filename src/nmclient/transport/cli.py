import logging
from collections import deque
from dataclasses import dataclass, field
from loguru import logger
from scrapli import Scrapli
from scrapli.exceptions import ScrapliAuthenticationFailed, ScrapliException, ScrapliTimeout

from nmclient.transport.abstract_transport import AbstractTransport
from nmclient.tools.exceptions import ConnectError, OperationTimeout
from nmclient.tools import tools


# we have to map the platform to our scrapli driver
#
# platform | scrapli
# ---------|------------
# ios      | cisco_iosxe
# iosxr    | cisco_iosxr
# nxos     | cisco_nxos
# eos      | arista_eos
# junos    | juniper_junos
PLATFORMS = {'ios': 'cisco_iosxe',
             'iosxe': 'cisco_iosxe',
             'iosxr': 'cisco_iosxr',
             'nxos': 'cisco_nxos',
             'eos': 'arista_eos',
             'junos': 'juniper_junos'}


@dataclass
class CliCommand:
    commands: list
    config: bool = False
    correlation_id: int = None


@dataclass
class CliReply:
    command: CliCommand
    outputs: list = field(default_factory=list)
    failed: bool = False


class CliTransport(AbstractTransport):
    """cli over ssh based on scrapli

    Parameters
    ----------
    target : Target
        the device to connect to
    scrapli_loglevel : str, optional
        loglevel of the scrapli logger, by default error
    """
    clean_abandon = False

    def __init__(self, target, scrapli_loglevel:str=None):
        super().__init__(target)
        self._connection = None
        self._replies = deque()

        if scrapli_loglevel:
            logging.getLogger('scrapli').setLevel(tools.get_loglevel(scrapli_loglevel))
            logging.getLogger('scrapli').propagate = True
        else:
            logging.getLogger('scrapli').setLevel(logging.ERROR)
            logging.getLogger('scrapli').propagate = False

    def connect(self, timeout:float=None) -> None:
        timeout = timeout if timeout is not None else self._target.timeout
        target = self._target
        creds = target.credentials

        driver = PLATFORMS.get(target.platform or 'ios')
        if driver is None:
            raise ConnectError(f'unknown cli platform {target.platform}')

        device = {
            "host": target.host,
            "port": target.port,
            "auth_username": creds.username,
            "auth_password": creds.password,
            "auth_strict_key": target.verify,
            "platform": driver,
            "timeout_socket": timeout,
            "timeout_transport": timeout,
            "timeout_ops": target.timeout,
            "ssh_config_file": True,
        }
        if creds.ssh_key:
            device["auth_private_key"] = creds.ssh_key
            if creds.ssh_passphrase:
                device["auth_private_key_passphrase"] = creds.ssh_passphrase
        if target.known_hosts:
            device["ssh_known_hosts_file"] = target.known_hosts

        connection = Scrapli(**device)
        logger.bind(extra="cli").debug(f'opening connection to device ({target.address}) platform={driver}')
        try:
            connection.open()
        except ScrapliAuthenticationFailed as exc:
            raise ConnectError(f'authentication to {target.address} failed', additional_info=str(exc)) from exc
        except ScrapliTimeout as exc:
            raise OperationTimeout(f'connect to {target.address} timed out') from exc
        except ScrapliException as exc:
            raise ConnectError(f'could not connect to {target.address}', additional_info=str(exc)) from exc

        self._connection = connection
        self._connected = True

    def send(self, command:CliCommand, timeout:float=None) -> None:
        self._check_open()
        timeout = timeout if timeout is not None else self._target.timeout
        try:
            if command.config:
                logger.bind(extra="cli").debug(f'sending {len(command.commands)} config lines to {self._target.address}')
                response = self._connection.send_configs(command.commands, timeout_ops=timeout)
            else:
                logger.bind(extra="cli").debug(f'sending {command.commands} to {self._target.address}')
                response = self._connection.send_commands(command.commands, timeout_ops=timeout)
        except ScrapliTimeout as exc:
            raise OperationTimeout(f'command on {self._target.address} timed out after {timeout}s') from exc
        except ScrapliException as exc:
            self.close()
            raise ConnectError(f'could not send command to {self._target.address}', additional_info=str(exc)) from exc

        outputs = [(r.channel_input, r.result, r.failed) for r in response]
        self._replies.append(CliReply(command=command, outputs=outputs, failed=response.failed))

    def receive(self, timeout:float=None) -> CliReply:
        self._check_open()
        if not self._replies:
            raise ConnectError(f'no reply pending from {self._target.address}')
        return self._replies.popleft()

    def _release(self) -> None:
        if self._connection is not None:
            self._connection.close()
