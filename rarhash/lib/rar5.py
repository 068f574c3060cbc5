"""
Parsing of RAR 5.x archive headers. All integers in these headers, with the exception of checksums
and a few fixed size fields, are stored as variable length integers.

There are two ways in which the key derivation parameters of a RAR 5.x archive can be obtained:

- If the headers are encrypted, the archive encryption header provides salt, iteration count, and
  password check value. Every subsequent header is prefixed with an initialization vector, and
  one such vector is sufficient to build a record.
- Otherwise, every encrypted file or service header carries an extra field with its own salt,
  iteration count, initialization vector, and password check value.
"""
from __future__ import annotations

import enum
import zlib

from typing import TYPE_CHECKING

from Cryptodome.Hash import SHA256

from rarhash.lib.exceptions import MalformedHeader, NoCandidateFound, TruncatedRead, UnsupportedFeature
from rarhash.lib.records import Rar5Record, archive_base_name
from rarhash.lib.structures import EOF, FlagAccessMixin, Struct, StructReader

if TYPE_CHECKING:
    from typing import Iterator

    from rarhash.units import Unit

CRYPT_VERSION = 0
KDF_LG2_COUNT_MAX = 24

SALT_SIZE = 16
IV_SIZE = 16
PSWCHECK_SIZE = 8
PSWCHECK_CSUM_SIZE = 4

MAX_HEADER_SIZE = 0x200000
MAX_FIELD_SIZE_LENGTH = 3


class Rar5HeaderType(enum.IntEnum):
    MARK = 0
    MAIN = 1
    FILE = 2
    SERVICE = 3
    CRYPT = 4
    ENDARC = 5


class Rar5HeaderFlags(FlagAccessMixin, enum.IntFlag):
    Extra = 0x0001
    Data = 0x0002
    SkipIfUnknown = 0x0004
    SplitBefore = 0x0008
    SplitAfter = 0x0010
    Child = 0x0020
    Inherited = 0x0040


class Rar5ArchiveFlags(FlagAccessMixin, enum.IntFlag):
    Volume = 0x0001
    VolumeNumber = 0x0002
    Solid = 0x0004
    Protected = 0x0008
    Locked = 0x0010


class Rar5FileFlags(FlagAccessMixin, enum.IntFlag):
    Directory = 0x0001
    UnixTime = 0x0002
    CRC32 = 0x0004
    UnknownSize = 0x0008


class Rar5CryptFlags(FlagAccessMixin, enum.IntFlag):
    PasswordCheck = 0x0001
    TweakedChecksums = 0x0002


class Rar5ExtraType(enum.IntEnum):
    CRYPT = 1
    HASH = 2
    HTIME = 3
    VERSION = 4
    REDIR = 5
    UOWNER = 6
    SUBDATA = 7


def pswcheck_checksum(pswcheck: bytes) -> bytes:
    return SHA256.new(pswcheck).digest()[:PSWCHECK_CSUM_SIZE]


class CryptContext:
    """
    The archive wide encryption parameters from the archive encryption header. Once it exists, all
    subsequent headers of the archive are encrypted.
    """
    def __init__(self, salt: bytes, lg2count: int, pswcheck: bytes, pswcheck_verified: bool):
        self.salt = salt
        self.lg2count = lg2count
        self.pswcheck = pswcheck
        self.pswcheck_verified = pswcheck_verified

    def __repr__(self):
        return F'<crypt:lg2={self.lg2count}:salt={self.salt.hex()}:verified={self.pswcheck_verified}>'


class Rar5Block(Struct):
    """
    The generic header envelope: checksum, size, type, flags, and the optional sizes of extra and
    data area.
    """
    def __init__(self, reader: StructReader):
        self.crc = reader.u32()
        start = reader.tell()
        self.block_size = reader.read_vint()
        self.block_size_length = reader.tell() - start
        if self.block_size > MAX_HEADER_SIZE:
            raise MalformedHeader(F'Header size {self.block_size} exceeds the maximum of {MAX_HEADER_SIZE}.')
        self.type = reader.u8()
        self.flags = Rar5HeaderFlags(reader.read_vint())
        self.extra_size = reader.read_vint() if self.flags.Extra else 0
        self.data_size = reader.read_vint() if self.flags.Data else 0

    @property
    def head_size(self) -> int:
        return self.block_size + 4 + self.block_size_length

    @property
    def next_block(self) -> int:
        return self.offset + self.head_size + self.data_size

    @property
    def extra_offset(self) -> int:
        return self.offset + self.head_size - self.extra_size

    def computed_crc(self, reader: StructReader) -> int:
        with reader.detour_absolute(self.offset + 4):
            return zlib.crc32(reader.read(self.head_size - 4))

    def __repr__(self):
        try:
            name = Rar5HeaderType(self.type).name
        except ValueError:
            name = F'{self.type:#x}'
        return F'<block:{name}:{self.offset:#x}:{self.head_size}+{self.data_size}>'


class Rar5Archive:
    """
    Extract password verification material from a RAR 5.x archive. The reader has to be positioned
    directly after the archive signature. The header checksum is verified, but a mismatch is only
    reported unless `strict` is set. Optionally, a `rarhash.units.Unit` can be passed to the class
    as a parameter to use its logger.
    """
    crypt: CryptContext | None

    def __init__(self, reader: StructReader, path: str, unit: Unit | None = None, strict: bool = False):
        self.reader = reader
        self.path = path
        self.name = archive_base_name(path)
        self.strict = strict
        self.crypt = None
        self.found = 0
        self._log_verbose = (lambda *_: None) if unit is None else unit.log_debug
        self._log_comment = (lambda *_: None) if unit is None else unit.log_info
        self._log_warning = (lambda *_: None) if unit is None else unit.log_warn

    def records(self) -> Iterator[Rar5Record]:
        """
        Traverse the archive headers and generate one record for every encrypted file entry, or a
        single record when the archive headers are encrypted. Raises
        `rarhash.lib.exceptions.NoCandidateFound` after the traversal if nothing was generated.
        """
        reader = self.reader
        while True:
            if (crypt := self.crypt) is not None:
                iv = reader.read(IV_SIZE)
                if len(iv) < IV_SIZE:
                    raise EOF(IV_SIZE, iv)
                self._log_comment(F'encrypted header found in {self.name}')
                self.found += 1
                yield Rar5Record(self.path, crypt.salt, crypt.lg2count, iv, crypt.pswcheck)
                break
            if reader.eof:
                self._log_comment(F'{self.path}: End of file')
                break
            block = Rar5Block.Parse(reader)
            self._log_verbose(repr(block))
            self._verify(block)
            if block.type == Rar5HeaderType.ENDARC:
                break
            elif block.type == Rar5HeaderType.CRYPT:
                self.crypt = self._read_crypt(reader)
            elif block.type == Rar5HeaderType.MAIN:
                flags = Rar5ArchiveFlags(reader.read_vint())
                if flags.VolumeNumber:
                    self._log_verbose(F'volume number {reader.read_vint()}')
            elif block.type in (Rar5HeaderType.FILE, Rar5HeaderType.SERVICE):
                self._read_file(reader, block)
                if block.extra_size:
                    reader.seekset(block.extra_offset)
                    try:
                        yield from self._read_extra(reader, block)
                    except (MalformedHeader, UnsupportedFeature, TruncatedRead) as E:
                        self._log_warning(F'{self.path}: ignoring extra area of {block!r};', E)
            reader.seekset(block.next_block)
        if not self.found:
            raise NoCandidateFound(self.path)

    def _verify(self, block: Rar5Block):
        if (computed := block.computed_crc(self.reader)) == block.crc:
            return
        message = F'header checksum mismatch for {block!r}; computed {computed:08X}, expected {block.crc:08X}.'
        if self.strict:
            raise MalformedHeader(message)
        self._log_warning(message)

    def _read_crypt(self, reader: StructReader) -> CryptContext:
        if (version := reader.read_vint()) > CRYPT_VERSION:
            raise UnsupportedFeature(F'bad rar crypt version byte {version}')
        flags = Rar5CryptFlags(reader.read_vint())
        if (lg2count := reader.u8()) > KDF_LG2_COUNT_MAX:
            raise MalformedHeader(F'rar PBKDF2 iteration count too large: 2^{lg2count}')
        salt = reader.read_exactly(SALT_SIZE)
        pswcheck = bytes(PSWCHECK_SIZE)
        verified = False
        if flags.PasswordCheck:
            pswcheck = reader.read_exactly(PSWCHECK_SIZE)
            checksum = reader.read_exactly(PSWCHECK_CSUM_SIZE)
            verified = pswcheck_checksum(pswcheck) == checksum
            if not verified:
                self._log_warning('the password check value has an invalid checksum and may be damaged')
        else:
            self._log_warning('archive has no password check value')
        crypt = CryptContext(salt, lg2count, pswcheck, verified)
        self._log_verbose(repr(crypt))
        return crypt

    def _read_file(self, reader: StructReader, block: Rar5Block):
        flags = Rar5FileFlags(reader.read_vint())
        unpack_size = reader.read_vint()
        attributes = reader.read_vint()
        if flags.UnixTime:
            reader.u32()
        if flags.CRC32:
            reader.u32()
        compression = reader.read_vint()
        host_os = reader.read_vint()
        name_size = reader.read_vint()
        reader.seekrel(name_size)
        self._log_verbose(
            F'unpack size {unpack_size}, attributes {attributes:#x}, compression {compression:#x}, host {host_os}')

    def _read_extra(self, reader: StructReader, block: Rar5Block) -> Iterator[Rar5Record]:
        remaining = block.extra_size
        while remaining > 0:
            start = reader.tell()
            field_size = reader.read_vint()
            if (length := reader.tell() - start) > MAX_FIELD_SIZE_LENGTH:
                raise MalformedHeader(F'The extra field size occupies {length} bytes, the limit is {MAX_FIELD_SIZE_LENGTH}.')
            remaining -= length + field_size
            if remaining < 0:
                raise MalformedHeader(F'Extra field of size {field_size} exceeds the extra area.')
            field_end = reader.tell() + field_size
            field_type = reader.read_vint()
            if field_type == Rar5ExtraType.CRYPT:
                yield self._read_extra_crypt(reader)
                return
            reader.seekset(field_end)

    def _read_extra_crypt(self, reader: StructReader) -> Rar5Record:
        version = reader.read_vint()
        flags = Rar5CryptFlags(reader.read_vint())
        if not flags.PasswordCheck:
            raise UnsupportedFeature('UsePswCheck is OFF. We currently don\'t support such files!')
        if (lg2count := reader.u8()) >= KDF_LG2_COUNT_MAX:
            raise MalformedHeader(F'Lg2Count >= {KDF_LG2_COUNT_MAX} (problem with file?)')
        salt = reader.read_exactly(SALT_SIZE)
        iv = reader.read_exactly(IV_SIZE)
        pswcheck = reader.read_exactly(PSWCHECK_SIZE)
        self._log_verbose(F'file encryption version {version}, lg2count {lg2count}')
        self.found += 1
        return Rar5Record(self.path, salt, lg2count, iv, pswcheck)
