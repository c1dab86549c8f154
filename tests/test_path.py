import pytest

from nmclient.model.path import Path, PathElem


def test_parse_keys_and_str():
    path = Path.parse('/interfaces/interface[name=eth0]/config')

    assert [e.name for e in path.elems] == ['interfaces', 'interface', 'config']
    assert path.elems[1].keys == (('name', 'eth0'),)
    assert str(path) == '/interfaces/interface[name=eth0]/config'


def test_parse_module_and_origin():
    path = Path.parse('openconfig:/ietf-interfaces:interfaces/interface[name=eth0]')

    assert path.origin == 'openconfig'
    assert path.elems[0].module == 'ietf-interfaces'
    assert path.elems[0].name == 'interfaces'
    assert path.elems[1].module is None
    assert str(path) == 'openconfig:/ietf-interfaces:interfaces/interface[name=eth0]'


def test_quoted_key_values_keep_slashes_and_brackets():
    path = Path.parse("/interfaces/interface[name='Gi0/0/1']/subinterfaces/subinterface[index=0]")

    assert path.elems[1].key_dict == {'name': 'Gi0/0/1'}
    assert len(path) == 4
    assert Path.parse(str(path)) == path


def test_multiple_keys_compare_without_order():
    a = Path.parse('/routes/route[prefix=10.0.0.0/8][vrf=red]')
    b = Path.parse('/routes/route[vrf=red][prefix=10.0.0.0/8]')

    assert a == b
    assert hash(a.elems[1]) == hash(b.elems[1])
    # the written order is kept for uri building
    assert a.elems[1].keys[0][0] == 'prefix'


def test_root_and_helpers():
    root = Path.parse('/')
    assert root.is_root
    assert str(root) == '/'

    path = Path.parse('/system') / 'clock/timezone-name'
    assert str(path) == '/system/clock/timezone-name'
    assert str(path.parent) == '/system/clock'
    assert path.last == PathElem('timezone-name')


def test_path_elem_is_immutable():
    elem = PathElem('interface', keys={'name': 'eth0'})
    with pytest.raises(AttributeError):
        elem.name = 'other'


@pytest.mark.parametrize('text', [
    '/interfaces/interface[name=eth0',
    '/interfaces/interface]name=eth0]',
    '/interfaces/interface[eth0]',
])
def test_invalid_paths(text):
    with pytest.raises(ValueError):
        Path.parse(text)
