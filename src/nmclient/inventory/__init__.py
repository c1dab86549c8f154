"""targets from a yaml configuration

defaults:
  protocol: netconf
  profile: default
  timeout: 30
targets:
  lab-r1:
    host: 192.0.2.1
    namespaces:
      interfaces: urn:ietf:params:xml:ns:yang:ietf-interfaces
  lab-r2:
    host: 192.0.2.2
    protocol: restconf
    modules:
      interfaces: ietf-interfaces

Each target is merged with the defaults section (nested dicts are merged,
the target wins). Credentials are taken from the named profile or from
username/password of the entry.
"""
from loguru import logger

from nmclient.model.target import Target, Credentials
from nmclient.profile import Profile
from nmclient.tools import tools

# keys of an entry that are passed to Target as they are
TARGET_FIELDS = ('host', 'protocol', 'port', 'verify', 'ca_file', 'known_hosts', 'use_tls',
                 'tls_server_name', 'timeout', 'read_timeout', 'keepalive', 'namespaces', 'modules',
                 'platform', 'manufacturer', 'cli_parse')


def _merge(defaults:dict, values:dict) -> dict:
    merged = dict(defaults)
    for key, value in values.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Inventory:
    """immutable Targets built from the targets section of a config

    Parameters
    ----------
    config : dict
        config with a targets and an optional defaults and profiles section
    """

    def __init__(self, config:dict):
        self._config = config or {}
        self._targets = {}
        defaults = self._config.get('defaults', {}) or {}
        for name, values in (self._config.get('targets', {}) or {}).items():
            self._targets[name] = self._build(name, _merge(defaults, values or {}))
        logger.bind(extra="inventory").debug(f'inventory contains {len(self._targets)} targets')

    def _build(self, name:str, values:dict) -> Target:
        if 'host' not in values:
            values = dict(values, host=name)
        kwargs = {k: values[k] for k in TARGET_FIELDS if k in values}
        if 'cli_capabilities' in values:
            kwargs['cli_capabilities'] = tuple(values['cli_capabilities'])

        profile_name = values.get('profile')
        if profile_name:
            profile = Profile(profile_config=self._config, profile_name=profile_name,
                              username=values.get('username'), password=values.get('password'))
            kwargs['credentials'] = profile.credentials
        else:
            kwargs['credentials'] = Credentials(username=values.get('username'),
                                                password=values.get('password'),
                                                ssh_key=values.get('ssh_key'),
                                                ssh_passphrase=values.get('ssh_passphrase'))
        return Target(**kwargs)

    def __len__(self):
        return len(self._targets)

    def __iter__(self):
        return iter(self._targets.values())

    def __contains__(self, name):
        return name in self._targets

    def __getitem__(self, name:str) -> Target:
        return self._targets[name]

    def get(self, name:str, default=None) -> Target:
        return self._targets.get(name, default)

    def names(self) -> list:
        return list(self._targets)

    def items(self):
        return self._targets.items()

    def filter(self, **attributes) -> list:
        """return all targets whose attributes equal the given values (eg. protocol=Protocol.GNMI)"""
        return [t for t in self._targets.values()
                if all(getattr(t, k, None) == v for k, v in attributes.items())]


def load_inventory(config_file:str=None, app_path:str=None, subdir:str=None) -> Inventory:
    """read the inventory config (see tools.get_config) and return the Inventory"""
    config = tools.get_config('inventory', app_path=app_path, config_file=config_file, subdir=subdir)
    if config is None:
        raise FileNotFoundError(f'inventory config {config_file or "inventory.yaml"} not found')
    return Inventory(config)
