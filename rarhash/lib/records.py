"""
The records emitted by rarhash. Each record renders to exactly one line of text which can be fed
to an offline password recovery tool. Binary fields are rendered as lowercase hexadecimal in the
order in which they are stored in the archive.

- Format A, encrypted headers:
  `name:$A3$*0*salt*block:0::::path`
- Format A, encrypted file:
  `name:$A3$*1*salt*crc*pack*unpack*1*ciphertext*method:1::filenames`
- Format B:
  `name:$B5$*16*salt*log2count*iv*8*pswcheck`
"""
from __future__ import annotations

import os

from typing import NamedTuple

from rarhash.lib.types import buf

RAR3_TAG = '$A3$'
RAR5_TAG = '$B5$'


def archive_base_name(path: str) -> str:
    return os.path.basename(path)


def hexlify(data: buf) -> str:
    return bytes(data).hex()


class Rar3HeaderRecord(NamedTuple):
    """
    Archive created with encrypted headers; the record holds the salt and the final encrypted block
    of the archive, whose plaintext is known.
    """
    path: str
    salt: bytes
    block: bytes

    mode = 0

    def format(self) -> str:
        return (
            F'{archive_base_name(self.path)}:{RAR3_TAG}*{self.mode}*{hexlify(self.salt)}*{hexlify(self.block)}'
            F':{self.mode}::::{self.path}')

    __str__ = format


class Rar3FileRecord(NamedTuple):
    """
    A single encrypted file entry, including the full ciphertext of the entry.
    """
    path: str
    salt: bytes
    crc32: bytes
    pack_size: int
    unpack_size: int
    method: int
    ciphertext: bytes
    names: str = ''

    mode = 1

    def format(self) -> str:
        return (
            F'{archive_base_name(self.path)}:{RAR3_TAG}*{self.mode}*{hexlify(self.salt)}*{hexlify(self.crc32)}'
            F'*{self.pack_size}*{self.unpack_size}*1*{hexlify(self.ciphertext)}*{self.method:02x}'
            F':{self.mode}::{self.names}')

    __str__ = format


class Rar5Record(NamedTuple):
    """
    Key derivation parameters and password check value of a format B archive; the initialization
    vector comes either from an encrypted header or from an encrypted file entry.
    """
    path: str
    salt: bytes
    lg2count: int
    iv: bytes
    pswcheck: bytes

    def format(self) -> str:
        return (
            F'{archive_base_name(self.path)}:{RAR5_TAG}*{len(self.salt)}*{hexlify(self.salt)}*{self.lg2count}'
            F'*{hexlify(self.iv)}*{len(self.pswcheck)}*{hexlify(self.pswcheck)}')

    __str__ = format
