import pytest
import yaml

from nmclient.inventory import Inventory, load_inventory
from nmclient.model.target import Protocol
from nmclient.profile import encrypt

IF_NS = 'urn:ietf:params:xml:ns:yang:ietf-interfaces'

CONFIG = {
    'defaults': {
        'protocol': 'netconf',
        'timeout': 10,
        'username': 'admin',
        'password': 'admin',
        'namespaces': {'interfaces': IF_NS},
    },
    'targets': {
        'lab-r1': {'host': '192.0.2.1'},
        'lab-r2': {
            'host': '192.0.2.2',
            'protocol': 'gnmi',
            'port': 6030,
            'namespaces': {'system': 'urn:ietf:params:xml:ns:yang:ietf-system'},
        },
        'lab-sw1': {
            'protocol': 'cli',
            'platform': 'ios',
            'cli_parse': True,
            'cli_capabilities': ['show', 'config'],
        },
    },
}


def test_targets_are_merged_with_defaults():
    inventory = Inventory(CONFIG)

    assert len(inventory) == 3
    assert inventory.names() == ['lab-r1', 'lab-r2', 'lab-sw1']
    r1 = inventory['lab-r1']
    assert r1.protocol == Protocol.NETCONF
    assert r1.port == 830
    assert r1.timeout == 10
    assert r1.credentials.username == 'admin'

    r2 = inventory['lab-r2']
    assert r2.protocol == Protocol.GNMI
    assert r2.port == 6030
    assert r2.namespaces == {'interfaces': IF_NS, 'system': 'urn:ietf:params:xml:ns:yang:ietf-system'}

    sw1 = inventory['lab-sw1']
    assert sw1.host == 'lab-sw1'
    assert sw1.cli_capabilities == ('show', 'config')
    assert sw1.cli_parse is True


def test_lookup_and_filter():
    inventory = Inventory(CONFIG)

    assert 'lab-r1' in inventory
    assert inventory.get('missing') is None
    with pytest.raises(KeyError):
        inventory['missing']
    assert [t.host for t in inventory.filter(protocol=Protocol.GNMI)] == ['192.0.2.2']
    assert {t.host for t in inventory} == {'192.0.2.1', '192.0.2.2', 'lab-sw1'}


def test_profile_credentials(monkeypatch):
    monkeypatch.setenv('ENCRYPTIONKEY', 'inventory-key')
    monkeypatch.setenv('SALT', 'inventory-salt')
    monkeypatch.setenv('ITERATIONS', '1000')
    config = {
        'profiles': {'default': {'username': 'netops',
                                 'password': encrypt('s3cret', 'inventory-key', 'inventory-salt', iterations=1000)}},
        'defaults': {'profile': 'default', 'protocol': 'restconf'},
        'targets': {'lab-r3': {'host': '192.0.2.3', 'modules': {'interfaces': 'ietf-interfaces'}}},
    }

    target = Inventory(config)['lab-r3']

    assert target.credentials.username == 'netops'
    assert target.credentials.password == 's3cret'
    assert target.modules == {'interfaces': 'ietf-interfaces'}


def test_load_inventory_from_file(tmp_path):
    config_file = tmp_path / 'lab.yaml'
    config_file.write_text(yaml.safe_dump(CONFIG))

    inventory = load_inventory(config_file=str(config_file), app_path=str(tmp_path))

    assert inventory['lab-r1'].address == '192.0.2.1:830'


def test_load_inventory_without_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_inventory(config_file='missing.yaml', app_path=str(tmp_path))
