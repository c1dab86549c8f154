import pytest

from nmclient.codec import cli
from nmclient.codec.cli import CliCodec, path_to_command
from nmclient.model.capabilities import Capabilities, Datastore
from nmclient.model.operation import GetOperation, SetOperation, Edit, Scope, MergePolicy, Encoding
from nmclient.model.path import Path
from nmclient.model.result import Source
from nmclient.model.target import Protocol
from nmclient.transport.cli import CliReply
from nmclient.tools.exceptions import DecodeError, ServerRejectedError, UnsupportedError


def make_caps() -> Capabilities:
    return Capabilities(protocol=Protocol.CLI,
                        encodings=(Encoding.ASCII,),
                        merge_policies=frozenset({MergePolicy.MERGE}),
                        datastores=frozenset({Datastore.RUNNING}))


def test_path_to_command():
    assert path_to_command(Path.parse("/show/interfaces[name='Gi0/1']/status")) == 'show interfaces Gi0/1 status'
    with pytest.raises(UnsupportedError):
        path_to_command(Path.parse('/'))


def test_get_returns_raw_output_and_ignores_scope():
    codec = CliCodec()
    operation = GetOperation('/show/version', Scope.STATE_ONLY)
    command = codec.encode_request(operation, make_caps(), 1)
    assert command.commands == ['show version']
    assert not command.config

    reply = CliReply(command=command, outputs=[('show version', 'Cisco IOS XE Software', False)])
    result, correlation_id = codec.decode_response(reply, operation)

    assert correlation_id == 1
    assert result.source == Source.UNKNOWN
    assert result.data == {'command': 'show version', 'output': 'Cisco IOS XE Software'}
    assert result.metadata['scope_ignored'] is True


def test_get_parses_output_when_platform_is_set(monkeypatch):
    calls = []

    def fake_parse_output(platform, command, data):
        calls.append((platform, command))
        return [{'version': '17.3.4'}]

    monkeypatch.setattr(cli, 'parse_output', fake_parse_output)
    codec = CliCodec(platform='cisco_ios')
    operation = GetOperation('/show/version', Scope.BOTH)
    command = codec.encode_request(operation, make_caps(), 1)

    result, _ = codec.decode_response(CliReply(command=command, outputs=[('show version', 'raw', False)]),
                                      operation)

    assert calls == [('cisco_ios', 'show version')]
    assert result.data['parsed'] == [{'version': '17.3.4'}]


def test_parse_error_keeps_raw_output(monkeypatch):
    def broken(platform, command, data):
        raise AttributeError('no template')

    monkeypatch.setattr(cli, 'parse_output', broken)
    codec = CliCodec(platform='cisco_ios')
    operation = GetOperation('/show/clock', Scope.BOTH)
    command = codec.encode_request(operation, make_caps(), 1)

    result, _ = codec.decode_response(CliReply(command=command, outputs=[('show clock', '12:00', False)]),
                                      operation)

    assert result.data['output'] == '12:00'
    assert 'parsed' not in result.data
    assert result.metadata['parse_error'] == 'no template'


def test_set_builds_context_lines():
    operation = SetOperation((Edit("/interface[name='GigabitEthernet0/1']",
                                   'description uplink\n no shutdown\n',
                                   Encoding.ASCII, MergePolicy.MERGE),))

    command = CliCodec().encode_request(operation, make_caps(), 2)

    assert command.config
    assert command.commands == ['interface GigabitEthernet0/1', 'description uplink', ' no shutdown', 'exit']


def test_set_with_other_merge_policy_is_unsupported():
    operation = SetOperation((Edit('/hostname', 'hostname r1', Encoding.ASCII, MergePolicy.REPLACE),))
    with pytest.raises(UnsupportedError):
        CliCodec().encode_request(operation, make_caps(), 1)


def test_failed_command_is_server_rejected():
    codec = CliCodec()
    operation = GetOperation('/show/bogus', Scope.BOTH)
    command = codec.encode_request(operation, make_caps(), 1)
    reply = CliReply(command=command, outputs=[('show bogus', '% Invalid input detected', True)], failed=True)

    with pytest.raises(ServerRejectedError) as excinfo:
        codec.decode_response(reply, operation)
    assert excinfo.value.server_message == '% Invalid input detected'


def test_config_that_is_not_text_is_a_decode_error():
    operation = SetOperation((Edit('/interface/GigabitEthernet1', b'description \xff\xfe', Encoding.ASCII,
                                   MergePolicy.MERGE),))
    with pytest.raises(DecodeError):
        CliCodec().encode_request(operation, make_caps(), 1)
