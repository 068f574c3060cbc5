"""
Interfaces and classes to read structured data from seekable binary streams.
"""
from __future__ import annotations

import enum
import functools
import io

from typing import TYPE_CHECKING, BinaryIO, Generic, TypeVar, Union

from rarhash.lib.exceptions import TruncatedRead, VarintOverflow

if TYPE_CHECKING:
    from typing import Self

    from rarhash.lib.types import buf

R = TypeVar('R', bound=Union[io.IOBase, BinaryIO])

VINT_MAX_SIZE = 10
"""
The maximum number of bytes in a variable length integer; each byte holds 7 bits of payload, so
this is enough to represent any unsigned 64-bit integer.
"""


class EOF(TruncatedRead):
    """
    While reading from a `rarhash.lib.structures.StructReader`, less bytes were available than
    requested. The exception contains the data from the incomplete read.
    """
    def __init__(self, size: int, rest: buf = B''):
        super().__init__(F'Unexpected end of stream; attempted to read {size} bytes, but got only {len(rest)}.')
        self.rest = rest
        self.size = size


def vint_decode(data: buf, offset: int = 0) -> tuple[int, int]:
    """
    Decode a variable length integer from the given buffer at the given offset. Every byte contributes
    its lower 7 bits, least significant group first, and the high bit signals that more bytes follow.
    The function returns the decoded value and the number of bytes it occupied. If the buffer ends
    before the integer is terminated, `rarhash.lib.structures.EOF` is raised; if the integer is not
    terminated within `rarhash.lib.structures.VINT_MAX_SIZE` bytes, the function raises
    `rarhash.lib.exceptions.VarintOverflow`.
    """
    value = 0
    for k in range(VINT_MAX_SIZE):
        try:
            b = data[offset + k]
        except IndexError:
            raise EOF(k + 1, bytes(data[offset:]))
        value |= (b & 0x7F) << (7 * k)
        if not b & 0x80:
            return value, k + 1
    raise VarintOverflow(VINT_MAX_SIZE)


def vint_encode(value: int) -> bytes:
    """
    The inverse of `rarhash.lib.structures.vint_decode`.
    """
    if value < 0:
        raise ValueError('Variable length integers cannot be negative.')
    out = bytearray()
    while True:
        b = value & 0x7F
        value >>= 7
        if value:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


class StreamDetour(Generic[R]):
    """
    A stream detour is used as a context manager to temporarily read from a different location
    in the stream and then return to the original offset when the context ends.
    """
    def __init__(self, stream: R, offset: int | None = None, whence: int = io.SEEK_SET):
        self.stream = stream
        self.offset = offset
        self.whence = whence

    def __enter__(self):
        self.cursor = self.stream.tell()
        if self.offset is not None:
            self.stream.seek(self.offset, self.whence)
        return self

    def __exit__(self, *args):
        self.stream.seek(self.cursor, io.SEEK_SET)


class StructReader:
    """
    A thin sequential reader over a seekable binary stream which provides methods to read fixed
    width integers, raw buffers, and variable length integers. Byte buffers are wrapped in a
    `io.BytesIO` object. The reader never buffers anything itself; the position of the underlying
    stream is always the position of the reader.
    """
    __slots__ = 'stream',

    def __init__(self, stream: BinaryIO | buf):
        if isinstance(stream, (bytes, bytearray, memoryview)):
            stream = io.BytesIO(stream)
        self.stream = stream

    def tell(self) -> int:
        return self.stream.tell()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self.stream.seek(offset, whence)

    def seekset(self, offset: int) -> int:
        if offset < 0:
            return self.seek(offset, io.SEEK_END)
        else:
            return self.seek(offset, io.SEEK_SET)

    def seekrel(self, offset: int) -> int:
        return self.seek(offset, io.SEEK_CUR)

    def seekend(self, offset: int) -> int:
        return self.seek(offset, io.SEEK_END)

    @property
    def size(self) -> int:
        with self.detour_from_end(0):
            return self.tell()

    @property
    def remaining_bytes(self) -> int:
        return max(0, self.size - self.tell())

    @property
    def eof(self) -> bool:
        return self.remaining_bytes == 0

    def detour(self, offset: int | None = None, whence: int = io.SEEK_SET):
        return StreamDetour(self.stream, offset, whence=whence)

    def detour_absolute(self, offset: int | None = None):
        return self.detour(offset, io.SEEK_SET)

    def detour_from_end(self, offset: int | None = None):
        return self.detour(offset, io.SEEK_END)

    def read(self, size: int | None = None, peek: bool = False) -> bytes:
        if size is None or size < 0:
            size = -1
        if peek:
            with self.detour():
                return self.stream.read(size)
        return self.stream.read(size)

    def read_exactly(self, size: int, peek: bool = False) -> bytes:
        """
        Read bytes from the underlying stream. Raises an exception of type `rarhash.lib.structures.EOF`
        when fewer data is available in the stream than requested via the `size` parameter. The
        remaining data can be extracted from the exception.
        """
        data = self.read(size, peek)
        if size and len(data) < size:
            raise EOF(size, data)
        return data

    def read_integer(self, size: int, peek: bool = False) -> int:
        """
        Read a little endian integer of the given size (in bits) from the stream.
        """
        nbytes, rest = divmod(size, 8)
        if rest > 0:
            raise ValueError(
                F'A {self.__class__.__name__} cannot read {size} bit{"s" * (size > 1)}, only multiples of 8 are possible.')
        data = self.read_exactly(nbytes, peek)
        return int.from_bytes(data, 'little')

    def u8(self, peek: bool = False) -> int:
        return self.read_integer(8, peek)

    def u16(self, peek: bool = False) -> int:
        return self.read_integer(16, peek)

    def u32(self, peek: bool = False) -> int:
        return self.read_integer(32, peek)

    def read_vint(self, peek: bool = False) -> int:
        """
        Read a variable length integer, see `rarhash.lib.structures.vint_decode`. The number of bytes
        that were consumed can be obtained by comparing `rarhash.lib.structures.StructReader.tell`
        before and after the call.
        """
        start = self.tell()
        data = bytearray()
        try:
            for _ in range(VINT_MAX_SIZE):
                b = self.stream.read(1)
                if not b:
                    raise EOF(len(data) + 1, data)
                data.extend(b)
                if not b[0] & 0x80:
                    break
            value, _ = vint_decode(data)
        finally:
            if peek:
                self.seekset(start)
        return value


class StructMeta(type):
    """
    A metaclass to facilitate the behavior outlined for `rarhash.lib.structures.Struct`.
    """
    def __init__(cls, name, bases, nmspc, **_):
        super().__init__(name, bases, nmspc)
        original__init__ = cls.__init__

        @functools.wraps(original__init__)
        def wrapped__init__(self: Struct, reader: StructReader, *args, **kwargs):
            self._offset = reader.tell()
            original__init__(self, reader, *args, **kwargs)
            self._length = reader.tell() - self._offset

        setattr(cls, '__init__', wrapped__init__)


class Struct(metaclass=StructMeta):
    """
    A class to parse structured data. A `rarhash.lib.structures.Struct` class can be instantiated
    as follows:

        foo = Struct.Parse(data, bar=29)

    The initialization routine of the structure will be called with a single argument `reader`. If
    the object `data` is already a `rarhash.lib.structures.StructReader`, then it will be passed as
    `reader`. Otherwise, the argument will be wrapped in a `rarhash.lib.structures.StructReader`.
    Additional arguments to the struct are passed through. The stream offset where parsing began is
    available as `offset`.
    """
    _offset: int
    _length: int

    @classmethod
    def Parse(cls, reader: StructReader | BinaryIO | buf, *args, **kwargs) -> Self:
        if not isinstance(reader, StructReader):
            reader = StructReader(reader)
        return cls(reader, *args, **kwargs)

    @property
    def offset(self) -> int:
        return self._offset

    def __len__(self):
        return self._length

    def __init__(self, reader: StructReader, *args, **kwargs):
        pass


class FlagAccessMixin:
    """
    This class can be mixed into an `enum.IntFlag` so that the members of a flag value can be
    accessed as boolean attributes:

        class Flags(FlagAccessMixin, enum.IntFlag):
            Solid = 0x10
            Encrypted = 0x04

        flags = Flags(0x14)

        if flags.Encrypted:
            ...

    Flag values are represented by the names of the flags they contain.
    """
    def __getattribute__(self, name: str):
        if not isinstance(self, enum.IntFlag):
            raise RuntimeError
        if not name.startswith('_'):
            try:
                flag = self.__class__[name]
            except KeyError:
                pass
            else:
                return flag in self
        return super().__getattribute__(name)

    def __repr__(self):
        if not isinstance(self, enum.IntFlag):
            raise RuntimeError
        if name := self.name:
            return name
        return super().__repr__()
