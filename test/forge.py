"""
Synthetic archive construction for the test suite. The archives contain valid header chains, but
the payload of encrypted entries is random filler; nothing is ever decrypted by the parsers.
"""
from __future__ import annotations

import struct
import zlib

from Cryptodome.Hash import SHA256

from rarhash.lib.structures import vint_encode as vint

RAR3_SIGNATURE = B'Rar!\x1A\x07\x00'
RAR5_SIGNATURE = B'Rar!\x1A\x07\x01\x00'

RAR3_LONG_BLOCK = 0x8000
RAR3_ENCRYPTED = 0x0004
RAR3_SALT = 0x0400
RAR3_SOLID = 0x0010
RAR3_UNICODE = 0x0200
RAR3_EXT_TIME = 0x1000
RAR3_HIGH_SIZES = 0x0100
RAR3_DIRECTORY = 0x00E0

RAR3_DEFAULT_FLAGS = RAR3_LONG_BLOCK | RAR3_ENCRYPTED | RAR3_SALT

RAR3_ENCRYPTED_HEADERS = 0x0080
RAR3_END_BLOCK = struct.pack('<HBHH', 0x3DC4, 0x7B, 0x4000, 7)


def rar3_main_header(flags: int = 0, comment: bytes = B'') -> bytes:
    return struct.pack('<HBHH6s', 0, 0x73, flags, 13 + len(comment), bytes(6)) + comment


def rar3_file_header(
    name: bytes,
    data: bytes,
    unpack_size: int,
    flags: int = RAR3_DEFAULT_FLAGS,
    method: int = 0x33,
    salt: bytes = bytes(range(8)),
    crc32: bytes = B'\xDE\xAD\xBE\xEF',
    ext_time: bytes = B'',
    block_type: int = 0x74,
    pack_size: int | None = None,
) -> bytes:
    if pack_size is None:
        pack_size = len(data)
    body = B''
    if flags & RAR3_HIGH_SIZES:
        body += struct.pack('<II', pack_size >> 32, unpack_size >> 32)
    body += name
    if flags & RAR3_SALT:
        body += salt
    body += ext_time
    head_size = 32 + len(body)
    fixed = struct.pack(
        '<HBHHIIB4sIBBHI',
        0,
        block_type,
        flags,
        head_size,
        pack_size & 0xFFFFFFFF,
        unpack_size & 0xFFFFFFFF,
        2,
        crc32,
        0,
        29,
        method,
        len(name),
        0x20,
    )
    return fixed + body + data


def rar3_archive(
    *entries: bytes,
    flags: int = 0,
    comment: bytes = B'',
    prefix: bytes = B'',
    end: bool = True,
) -> bytes:
    archive = prefix + RAR3_SIGNATURE + rar3_main_header(flags, comment) + B''.join(entries)
    # with encrypted headers, the end block is part of the encrypted trailer
    if end and not flags & RAR3_ENCRYPTED_HEADERS:
        archive += RAR3_END_BLOCK
    return archive


def rar5_block(htype: int, body: bytes = B'', extra: bytes = B'', data: bytes = B'', flags: int = 0) -> bytes:
    if extra:
        flags |= 0x01
    if data:
        flags |= 0x02
    payload = bytes((htype,)) + vint(flags)
    if extra:
        payload += vint(len(extra))
    if data:
        payload += vint(len(data))
    payload += body + extra
    size = vint(len(payload))
    crc = zlib.crc32(size + payload)
    return struct.pack('<I', crc) + size + payload + data


def rar5_main(volume: int | None = None) -> bytes:
    if volume is None:
        return rar5_block(1, vint(0))
    return rar5_block(1, vint(2) + vint(volume))


def rar5_end() -> bytes:
    return rar5_block(5, vint(0))


def rar5_crypt_header(salt: bytes, lg2count: int, pswcheck: bytes | None, checksum: bytes | None = None) -> bytes:
    body = vint(0)
    if pswcheck is None:
        body += vint(0) + bytes((lg2count,)) + salt
    else:
        if checksum is None:
            checksum = SHA256.new(pswcheck).digest()[:4]
        body += vint(1) + bytes((lg2count,)) + salt + pswcheck + checksum
    return rar5_block(4, body)


def rar5_extra_field(ftype: int, content: bytes) -> bytes:
    record = vint(ftype) + content
    return vint(len(record)) + record


def rar5_crypt_field(salt: bytes, lg2count: int, iv: bytes, pswcheck: bytes, flags: int = 1) -> bytes:
    content = vint(0) + vint(flags) + bytes((lg2count,)) + salt + iv + pswcheck
    if flags & 1:
        content += SHA256.new(pswcheck).digest()[:4]
    return rar5_extra_field(1, content)


def rar5_file(name: bytes, data: bytes = B'', extra: bytes = B'', htype: int = 2, unpack_size: int | None = None) -> bytes:
    if unpack_size is None:
        unpack_size = len(data)
    body = (
        vint(0x04)          # file flags: CRC32 present
        + vint(unpack_size)
        + vint(0x20)        # attributes
        + struct.pack('<I', zlib.crc32(data))
        + vint(0)           # compression info
        + vint(1)           # host OS
        + vint(len(name))
        + name
    )
    return rar5_block(htype, body, extra, data)


def rar5_archive(*blocks: bytes, prefix: bytes = B'') -> bytes:
    return prefix + RAR5_SIGNATURE + B''.join(blocks)
