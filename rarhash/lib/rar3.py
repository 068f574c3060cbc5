"""
Parsing of RAR 3.x archive headers. The parser never decompresses anything; it walks the header
chain and extracts the data required to verify a password candidate offline:

- If the archive headers are encrypted, this is the salt and the last encrypted block of the
  archive, whose plaintext is known.
- Otherwise, one encrypted file entry is selected from the archive and its salt, checksum, and
  complete ciphertext are extracted.
"""
from __future__ import annotations

import enum

from typing import TYPE_CHECKING, NamedTuple

from rarhash.lib.exceptions import MalformedHeader, NoCandidateFound
from rarhash.lib.records import Rar3FileRecord, Rar3HeaderRecord, archive_base_name
from rarhash.lib.structures import EOF, FlagAccessMixin, Struct, StructReader
from rarhash.lib.types import buf

if TYPE_CHECKING:
    from rarhash.units import Unit

PATH_BUF_SIZE = 256
"""
Maximum length of a decoded file name, in UTF-16 code units (including the terminator).
"""

NAME_BUFFER_SIZE = 4 * PATH_BUF_SIZE
"""
Maximum size of the stored file name field in bytes.
"""

EXT_TIME_MAX_SIZE = 32

ARCHIVE_HEADER_SIZE = 13
FILE_HEADER_SIZE = 32
TRAILER_SIZE = 24
SALT_SIZE = 8

METHOD_STORE = 0x30
DICTIONARY_DIRECTORY = 7


class Rar3BlockType(enum.IntEnum):
    MARK = 0x72
    MAIN = 0x73
    FILE = 0x74
    COMMENT = 0x75
    AV = 0x76
    SUB = 0x77
    PROTECT = 0x78
    SIGN = 0x79
    NEWSUB = 0x7A
    ENDARC = 0x7B


class Rar3ArchiveFlags(FlagAccessMixin, enum.IntFlag):
    Volume = 0x0001
    Comment = 0x0002
    Lock = 0x0004
    Solid = 0x0008
    NewNumbering = 0x0010
    AuthInfo = 0x0020
    Protected = 0x0040
    EncryptedHeaders = 0x0080
    FirstVolume = 0x0100


class Rar3FileFlags(FlagAccessMixin, enum.IntFlag):
    SplitBefore = 0x0001
    SplitAfter = 0x0002
    Encrypted = 0x0004
    Comment = 0x0008
    Solid = 0x0010
    HighSizes = 0x0100
    UnicodeName = 0x0200
    Salt = 0x0400
    Version = 0x0800
    ExtTime = 0x1000
    LongBlock = 0x8000


class Rar3ArchiveHeader(Struct):
    """
    The fixed size main archive header which follows the signature.
    """
    def __init__(self, reader: StructReader):
        self.crc = reader.u16()
        self.type = reader.u8()
        if self.type != Rar3BlockType.MAIN:
            raise MalformedHeader(F'Archive header type must be {Rar3BlockType.MAIN:#x}, got {self.type:#x}.')
        self.flags = Rar3ArchiveFlags(reader.u16())
        self.head_size = reader.u16()
        self.reserved = reader.read_exactly(6)

    @property
    def encrypted_headers(self) -> bool:
        return self.flags.EncryptedHeaders


class Rar3FileHeader(Struct):
    """
    The fixed 32 byte part of a file header; the variable length part is read by the method
    `rarhash.lib.rar3.Rar3FileHeader.read_extension`.
    """
    def __init__(self, reader: StructReader):
        self.crc = reader.u16()
        self.type = reader.u8()
        self.flags = Rar3FileFlags(reader.u16())
        self.head_size = reader.u16()
        self.pack_size = reader.u32()
        self.unpack_size = reader.u32()
        self.host_os = reader.u8()
        self.crc32 = reader.read_exactly(4)
        self.ftime = reader.u32()
        self.version = reader.u8()
        self.method = reader.u8()
        self.name_size = reader.u16()
        self.attributes = reader.u32()
        self.salt = bytes(SALT_SIZE)
        self.name = ''

    @property
    def dictionary(self) -> int:
        return (self.flags & 0xE0) >> 5

    @property
    def is_dir(self) -> bool:
        return self.dictionary == DICTIONARY_DIRECTORY

    @property
    def mnemonic(self) -> str:
        return F'm{self.method - METHOD_STORE:x}{chr(ord("a") + self.dictionary)}'

    def read_extension(self, reader: StructReader):
        """
        Read the variable length part of the header from the given stream, which has to be positioned
        directly after the fixed part. The size of the extended time field is whatever remains of the
        declared header size after all other fields have been read.
        """
        remaining = self.head_size - FILE_HEADER_SIZE
        if self.flags.HighSizes:
            self.pack_size += reader.u32() << 32
            self.unpack_size += reader.u32() << 32
            remaining -= 8
        if (size := self.name_size) > NAME_BUFFER_SIZE:
            raise MalformedHeader(F'File name size {size} exceeds the maximum of {NAME_BUFFER_SIZE}.')
        raw = reader.read_exactly(size)
        remaining -= size
        if self.flags.UnicodeName:
            self.name = decode_unicode_name(raw)
        else:
            self.name = decode_narrow_name(raw)
        if self.flags.Salt:
            self.salt = reader.read_exactly(SALT_SIZE)
            remaining -= SALT_SIZE
        if remaining < 0:
            raise MalformedHeader(F'Header size {self.head_size} is too small for the fields it declares.')
        if self.flags.ExtTime:
            if remaining > EXT_TIME_MAX_SIZE:
                raise MalformedHeader(F'Extended time field of size {remaining} exceeds the maximum of {EXT_TIME_MAX_SIZE}.')
            reader.read_exactly(remaining)


def decode_filename(name: buf, limit: int = PATH_BUF_SIZE) -> list[int]:
    """
    Decode the compressed wide character representation of a file name. The stored name consists
    of a null-terminated narrow name followed by the encoded wide name. The encoding starts with a
    high byte that is shared by many characters. Afterwards, every flag byte holds four selectors
    of two bits each, most significant first:

    - `0`: the next byte is a character with zero high byte.
    - `1`: the next byte is a character with the shared high byte.
    - `2`: the next two bytes are a little endian character.
    - `3`: a run; the next byte is a length. If its high bit is set, a correction byte follows and
      `(length & 0x7F) + 2` characters are produced by adding the correction to the narrow name
      bytes at the same position, combined with the shared high byte. Otherwise, `length + 2`
      characters are copied from the narrow name at the same position.

    The stored name is processed as a zero padded buffer of `rarhash.lib.rar3.NAME_BUFFER_SIZE`
    bytes, and the output is limited to `limit - 1` code units. The function returns the decoded
    code units up to, but not including, the first null character.
    """
    buffer = bytearray(NAME_BUFFER_SIZE)
    n = min(len(name), NAME_BUFFER_SIZE)
    buffer[:n] = name[:n]
    buffer[-1] = 0
    length = buffer.index(0)
    encoded = memoryview(buffer)[length + 1:]
    encoded_size = len(encoded)
    output = [0] * limit
    position = 0
    cursor = 0

    def next_byte() -> int:
        nonlocal position
        b = encoded[position] if position < encoded_size else 0
        position += 1
        return b

    flags = 0
    flag_bits = 0
    high = next_byte()

    while position < encoded_size - 1 and cursor < limit - 1:
        if flag_bits == 0:
            flags = next_byte()
            flag_bits = 8
        selector = flags >> 6
        if selector == 0:
            output[cursor] = next_byte()
            cursor += 1
        elif selector == 1:
            output[cursor] = next_byte() + (high << 8)
            cursor += 1
        elif selector == 2:
            lo = next_byte()
            output[cursor] = lo + (next_byte() << 8)
            cursor += 1
        else:
            count = next_byte()
            if count & 0x80:
                correction = next_byte()
                count = (count & 0x7F) + 2
                while count > 0 and cursor < limit:
                    output[cursor] = ((buffer[cursor] + correction) & 0xFF) + (high << 8)
                    count -= 1
                    cursor += 1
            else:
                count += 2
                while count > 0 and cursor < limit:
                    output[cursor] = buffer[cursor]
                    count -= 1
                    cursor += 1
        flags = (flags << 2) & 0xFF
        flag_bits -= 2

    output[min(cursor, limit - 1)] = 0
    return output[:output.index(0)]


def decode_narrow_name(name: buf) -> str:
    name = bytes(name)
    name, _, _ = name.partition(B'\0')
    return name.decode('utf8', 'surrogateescape')


def decode_unicode_name(name: buf) -> str:
    """
    Decode a stored file name with the unicode flag set. If the encoded wide name is empty, the
    narrow part is used instead.
    """
    if units := decode_filename(name):
        return B''.join(u.to_bytes(2, 'little') for u in units).decode('utf-16le', 'replace')
    return decode_narrow_name(name)


def minimum_unpack_size(method: int) -> int:
    return 4 if method > METHOD_STORE else 1


class Candidate(NamedTuple):
    pack_size: int
    unpack_size: int
    method: int


class CandidateSelector:
    """
    Tracks the best encrypted file entry of an archive. Smaller entries are faster to test, but
    entries that are too small produce false positives during password recovery. Hence, the entry
    with the smallest pack size is preferred unless it only decompresses to a few bytes; for two
    entries with the same pack size, the one that unpacks to at least 8 bytes is preferred.
    """
    best: Rar3FileRecord | None

    def __init__(self):
        self.best = None

    def is_improvement(self, candidate: Candidate) -> bool:
        if (best := self.best) is None:
            return True
        return not (
            (best.pack_size < candidate.pack_size and best.unpack_size >= minimum_unpack_size(best.method))
            or (best.unpack_size > candidate.unpack_size and candidate.unpack_size < minimum_unpack_size(candidate.method))
            or (best.pack_size == candidate.pack_size and (
                (best.unpack_size > candidate.unpack_size and candidate.unpack_size < 8)
                or (best.unpack_size <= candidate.unpack_size and best.unpack_size >= 8)
            ))
        )


class Rar3Archive:
    """
    Extract password verification material from a RAR 3.x archive. The reader has to be positioned
    directly after the archive signature. Optionally, a `rarhash.units.Unit` can be passed to the
    class as a parameter to use its logger.
    """
    def __init__(self, reader: StructReader, path: str, unit: Unit | None = None):
        self.reader = reader
        self.path = path
        self.name = archive_base_name(path)
        self.names: list[str] = []
        self.selector = CandidateSelector()
        self._log_verbose = (lambda *_: None) if unit is None else unit.log_debug
        self._log_comment = (lambda *_: None) if unit is None else unit.log_info
        self._log_warning = (lambda *_: None) if unit is None else unit.log_warn
        self._log_failure = (lambda *_: None) if unit is None else unit.log_fail
        self.header = header = Rar3ArchiveHeader.Parse(reader)
        if (size := header.head_size) > ARCHIVE_HEADER_SIZE:
            reader.seekrel(size - ARCHIVE_HEADER_SIZE)

    def extract(self) -> Rar3HeaderRecord | Rar3FileRecord:
        if self.header.encrypted_headers:
            return self._extract_trailer()
        return self._extract_candidate()

    def _extract_trailer(self) -> Rar3HeaderRecord:
        reader = self.reader
        self._log_comment(F'-hp mode entry found in {self.name}')
        reader.seekend(-min(reader.size, TRAILER_SIZE))
        trailer = reader.read_exactly(TRAILER_SIZE)
        return Rar3HeaderRecord(self.path, trailer[:SALT_SIZE], trailer[SALT_SIZE:])

    def _skip(self, header: Rar3FileHeader):
        self.reader.seekset(header.offset + header.head_size + header.pack_size)

    def _extract_candidate(self) -> Rar3FileRecord:
        reader = self.reader
        selector = self.selector

        while True:
            block = reader.read(FILE_HEADER_SIZE)
            if not block:
                self._log_comment(F'{self.path}: End of file')
                break
            if len(block) > 2 and block[2] == Rar3BlockType.ENDARC:
                self._log_comment(F'{self.path}: End of archive')
                break
            if len(block) < FILE_HEADER_SIZE:
                if selector.best is None:
                    raise EOF(FILE_HEADER_SIZE, block)
                self._log_warning(F'{self.path}:', EOF(FILE_HEADER_SIZE, block))
                break
            reader.seekrel(-FILE_HEADER_SIZE)
            header = Rar3FileHeader.Parse(reader)
            if header.type == Rar3BlockType.NEWSUB:
                self._log_comment(F'{self.path}: Comment block present?')
            elif header.type != Rar3BlockType.FILE:
                self._log_warning(F'{self.path}: Not recognising any more headers.')
                break
            if not header.flags.LongBlock:
                self._log_failure(F'File header flag {Rar3FileFlags.LongBlock:#x} unset, bailing out.')
                break

            header.read_extension(reader)
            self.names.append(header.name)

            self._log_verbose(
                F'HEAD_SIZE: {header.head_size}, PACK_SIZE: {header.pack_size}, UNP_SIZE: {header.unpack_size}')
            self._log_verbose(F'file_hdr_block: {block.hex(" ")}')
            self._log_comment(F'file name: {header.name}')

            if header.flags.Solid:
                self._log_warning('Solid, can\'t handle (currently)')
                self._skip(header)
                continue
            if header.is_dir:
                self._log_comment('Is a directory, skipping')
                self._skip(header)
                continue
            self._log_verbose(F'Dictionary size: {64 << header.dictionary} KB')
            if not header.flags.Encrypted:
                self._log_comment('not encrypted, skipping')
                self._skip(header)
                continue
            if not selector.is_improvement(Candidate(header.pack_size, header.unpack_size, header.method)):
                self._log_comment('We got a better candidate already, skipping')
                self._skip(header)
                continue

            self._log_comment('This is best candidate so far')
            self._log_verbose(F'salt: {header.salt.hex()}')
            self._log_verbose(F'UNP_VER is {header.version / 10:.1f}')
            self._log_verbose(F'METHOD is {header.mnemonic}')

            reader.seekset(header.offset + header.head_size)
            ciphertext = reader.read_exactly(header.pack_size)
            selector.best = Rar3FileRecord(
                self.path,
                header.salt,
                header.crc32,
                header.pack_size,
                header.unpack_size,
                header.method,
                ciphertext,
            )

        if (best := selector.best) is None:
            raise NoCandidateFound(self.name)
        self._log_comment(F'Found a valid -p mode candidate in {self.name}')
        if best.unpack_size < (5 if best.method > METHOD_STORE else 1):
            self._log_warning('WARNING best candidate found is too small, you may see false positives.')
        return best._replace(names=' '.join(self.names))
