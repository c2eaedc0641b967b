"""
Byte stream transforms for the backup pipeline

Each transform exposes process(chunk) -> bytes and flush() -> bytes.
pump() moves data chunk by chunk from a readable to a writable through a
chain of transforms; blocking reads and writes keep memory bounded by the
chunk size.
"""

import zlib
from typing import BinaryIO, Optional, Sequence, Union

from ..errors import DecompressionError

CHUNK_SIZE = 64 * 1024

# wbits for zlib with a gzip header and trailer
GZIP_WBITS = 16 + zlib.MAX_WBITS


class XorCipher:
    """
    Repeating-key XOR over the whole stream

    Byte n of the stream is combined with key[n % len(key)], where n counts
    from the start of the stream rather than the start of the chunk. The
    transform is its own inverse. Without a password it passes data through.
    """

    def __init__(self, password: Optional[Union[str, bytes]] = None):
        if isinstance(password, str):
            password = password.encode('utf-8')
        self.key = bytes(password or b'')
        self.offset = 0

    def reset(self):
        self.offset = 0

    def process(self, chunk: bytes) -> bytes:
        if not isinstance(chunk, (bytes, bytearray, memoryview)):
            raise TypeError(f"XorCipher expects bytes, got {type(chunk).__name__}")
        data = bytes(chunk)
        if not self.key or not data:
            return data

        size = len(data)
        start = self.offset % len(self.key)
        repeats = (start + size) // len(self.key) + 1
        keystream = (self.key * repeats)[start:start + size]
        self.offset += size

        mixed = int.from_bytes(data, 'big') ^ int.from_bytes(keystream, 'big')
        return mixed.to_bytes(size, 'big')

    def flush(self) -> bytes:
        return b''


class GzipCompressor:
    """Streaming gzip compression"""

    def __init__(self, level: int = 6):
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, GZIP_WBITS)

    def process(self, chunk: bytes) -> bytes:
        return self._compressor.compress(chunk)

    def flush(self) -> bytes:
        return self._compressor.flush()


class GzipDecompressor:
    """
    Streaming gzip decompression

    Concatenated gzip members are decoded one after another. Corrupt input
    and input that ends before the gzip trailer raise DecompressionError.
    """

    def __init__(self):
        self._decompressor = zlib.decompressobj(GZIP_WBITS)

    def process(self, chunk: bytes) -> bytes:
        try:
            output = self._decompressor.decompress(chunk)
            while self._decompressor.eof and self._decompressor.unused_data:
                rest = self._decompressor.unused_data
                self._decompressor = zlib.decompressobj(GZIP_WBITS)
                output += self._decompressor.decompress(rest)
        except zlib.error as e:
            raise DecompressionError(f"gunzip: {e}") from e
        return output

    def flush(self) -> bytes:
        try:
            tail = self._decompressor.flush()
        except zlib.error as e:
            raise DecompressionError(f"gunzip: {e}") from e
        if not self._decompressor.eof:
            raise DecompressionError("gunzip: unexpected end of file")
        return tail


def pump(source: BinaryIO, sink: BinaryIO, transforms: Sequence, chunk_size: int = CHUNK_SIZE) -> int:
    """
    Copy source to sink through the transforms

    Data flushed by a transform still passes through every transform after
    it, so the chain is drained in order.

    Returns:
        Number of bytes read from source
    """
    total = 0
    while True:
        chunk = source.read(chunk_size)
        if not chunk:
            break
        total += len(chunk)
        for transform in transforms:
            chunk = transform.process(chunk)
        if chunk:
            sink.write(chunk)

    for i, transform in enumerate(transforms):
        tail = transform.flush()
        for following in transforms[i + 1:]:
            tail = following.process(tail)
        if tail:
            sink.write(tail)
    sink.flush()
    return total
