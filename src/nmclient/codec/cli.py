"""raw CLI codec

A Path is turned into words: '/show/interfaces[name=Gi0/1]' becomes
'show interfaces Gi0/1'. There is no config/state split, the scope of a Get
is ignored and the Result is classified as Source.UNKNOWN.

For a Set the path elements become the context lines of the configuration
(eg. 'interface Gi0/1') followed by the lines of the payload. Only the merge
policy is supported, the CLI itself decides what a line replaces.
"""
from loguru import logger
from ntc_templates.parse import parse_output

from nmclient.codec.abstract_codec import AbstractCodec
from nmclient.model.operation import GetOperation, SetOperation
from nmclient.model.result import Result, Source
from nmclient.transport.cli import CliCommand, CliReply
from nmclient.tools.exceptions import DecodeError, ServerRejectedError, UnsupportedError


def command_words(elem) -> str:
    return ' '.join([elem.name] + [value for _, value in elem.keys])

def path_to_command(path) -> str:
    if path.is_root:
        raise UnsupportedError('a cli command needs a path')
    return ' '.join(command_words(e) for e in path.elems)


class CliCodec(AbstractCodec):
    """codec of cli commands

    Parameters
    ----------
    platform : str
        ntc_templates platform (eg. cisco_ios); parsing is disabled if None
    """
    protocol = 'cli'

    def __init__(self, platform:str=None):
        self._platform = platform

    def encode_request(self, operation, capabilities, correlation_id:int) -> CliCommand:
        if isinstance(operation, GetOperation):
            return CliCommand(commands=[path_to_command(operation.path)], correlation_id=correlation_id)
        if isinstance(operation, SetOperation):
            self.check_set(operation, capabilities)
            lines = []
            for edit in operation.edits:
                context = [command_words(e) for e in edit.path.elems]
                lines.extend(context)
                try:
                    text = edit.payload.decode()
                except UnicodeDecodeError as exc:
                    raise DecodeError(f'config for {edit.path} is not utf-8 text', additional_info=str(exc)) from exc
                lines.extend(line.rstrip() for line in text.splitlines() if line.strip())
                lines.extend(['exit'] * len(context))
            return CliCommand(commands=lines, config=True, correlation_id=correlation_id)
        raise self.unsupported(operation)

    def correlation_id(self, wire:CliReply):
        return wire.command.correlation_id

    def decode_response(self, wire:CliReply, operation) -> tuple:
        failed = [(cmd, output) for cmd, output, cmd_failed in wire.outputs if cmd_failed]
        if wire.failed or failed:
            command, output = failed[0] if failed else (None, None)
            raise ServerRejectedError(f'command {command!r} failed' if command else 'command failed',
                                      server_message=output)

        if isinstance(operation, SetOperation):
            return Result(source=Source.UNKNOWN, path=operation.path,
                          metadata={'outputs': [output for _, output, _ in wire.outputs if output]}), \
                wire.command.correlation_id

        command, output, _ = wire.outputs[0]
        data = {'command': command, 'output': output}
        metadata = {'scope_ignored': True}
        if self._platform:
            try:
                logger.bind(extra="cli").debug(f'parsing output; platform={self._platform} command={command}')
                data['parsed'] = parse_output(platform=self._platform, command=command, data=output)
            except Exception as exc:
                # no template for this command; the raw output is still returned
                logger.bind(extra="cli").warning(f'could not parse output of {command}: {exc}')
                metadata['parse_error'] = str(exc)
        return Result(data=data, source=Source.UNKNOWN, path=operation.path, metadata=metadata), \
            wire.command.correlation_id
