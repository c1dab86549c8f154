"""NETCONF message framing (RFC 6242)

base:1.0 terminates every message with ]]>]]>. base:1.1 sends chunks
("\\n#<size>\\n<data>") followed by the end-of-chunks marker "\\n##\\n".
Both framers are incremental: bytes are fed as they arrive and complete
messages are taken out with next_message.
"""
from nmclient.tools.exceptions import DecodeError

EOM = b']]>]]>'
MAX_CHUNK_SIZE = 4294967295


class EndOfMessageFramer:
    """framing of base:1.0 (and of every hello message)"""
    version = '1.0'

    def __init__(self):
        self._buffer = bytearray()

    def frame(self, data:bytes) -> bytes:
        return bytes(data) + EOM

    def feed(self, data:bytes) -> None:
        self._buffer.extend(data)

    def next_message(self) -> bytes | None:
        idx = self._buffer.find(EOM)
        if idx < 0:
            return None
        message = bytes(self._buffer[:idx])
        del self._buffer[:idx + len(EOM)]
        return message.strip()

    def pending(self) -> bytes:
        return bytes(self._buffer)


class ChunkedFramer:
    """framing of base:1.1

    Parameters
    ----------
    max_chunk : int, optional
        split outgoing messages into chunks of at most max_chunk bytes
    """
    version = '1.1'

    def __init__(self, max_chunk:int=None):
        self._buffer = bytearray()
        self._chunks = []
        self._max_chunk = max_chunk if max_chunk else MAX_CHUNK_SIZE

    def frame(self, data:bytes) -> bytes:
        data = bytes(data)
        if not data:
            raise ValueError('chunked framing cannot send an empty message')
        out = bytearray()
        for start in range(0, len(data), self._max_chunk):
            chunk = data[start:start + self._max_chunk]
            out.extend(b'\n#%d\n' % len(chunk))
            out.extend(chunk)
        out.extend(b'\n##\n')
        return bytes(out)

    def feed(self, data:bytes) -> None:
        self._buffer.extend(data)

    def next_message(self) -> bytes | None:
        while True:
            # the leading LF is mandatory but some devices omit it after a message
            start = 0
            if self._buffer[:1] == b'\n':
                start = 1
            header_end = self._buffer.find(b'\n', start)
            if header_end < 0:
                if len(self._buffer) - start > 12:
                    raise DecodeError(f'invalid chunk header {bytes(self._buffer[:16])!r}')
                return None
            header = bytes(self._buffer[start:header_end])
            if header == b'##':
                del self._buffer[:header_end + 1]
                message = b''.join(self._chunks)
                self._chunks = []
                return message
            if not header.startswith(b'#') or not header[1:].isdigit():
                raise DecodeError(f'invalid chunk header {header!r}')
            size = int(header[1:])
            if size < 1 or size > MAX_CHUNK_SIZE:
                raise DecodeError(f'invalid chunk size {size}')
            data_start = header_end + 1
            if len(self._buffer) < data_start + size:
                return None
            self._chunks.append(bytes(self._buffer[data_start:data_start + size]))
            del self._buffer[:data_start + size]

    def pending(self) -> bytes:
        return bytes(self._buffer)
