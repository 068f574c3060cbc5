"""
This module contains functions to identify the container format of an input stream. Besides plain
archives, it also handles self-extracting executables: These start with an executable stub, and
the actual archive signature has to be located by scanning the rest of the file.
"""
from __future__ import annotations

import enum

from rarhash.lib.environment import environment
from rarhash.lib.exceptions import NotAContainer, UnsupportedLegacyFormat
from rarhash.lib.structures import StructReader


class Signature(bytes, enum.Enum):
    LEGACY = B'RE~^'
    RAR3 = B'Rar!\x1A\x07\x00'
    RAR5 = B'Rar!\x1A\x07\x01\x00'
    MZ = B'MZ'


class ContainerKind(enum.IntEnum):
    Unsupported = 0
    FormatA = 3
    FormatB = 5


CHUNK_SIZE = 4096

_LONGEST_SIGNATURE = max(len(s.value) for s in Signature)


def scan_chunk_size() -> int:
    """
    The chunk size used for signature scans; it can be overridden with `RARHASH_CHUNK_SIZE` as long
    as the given value is larger than any of the known signatures.
    """
    size = environment.chunk_size.value
    if size and size > _LONGEST_SIGNATURE:
        return size
    return CHUNK_SIZE


def find_signature(reader: StructReader, signature: bytes, chunk_size: int = 0) -> int:
    """
    Search the stream for the given signature, starting at the current position, by reading it in
    chunks of the given size. If the signature is found, the stream is positioned at the first byte
    following it, and the function returns the offset of the signature. Consecutive chunks overlap
    by one byte less than the signature length, so a signature that straddles a chunk boundary is
    found by the subsequent read. If the signature is not found, the function returns `-1` and the
    stream position is undefined.
    """
    n = len(signature)
    chunk_size = chunk_size or scan_chunk_size()
    if chunk_size <= n:
        raise ValueError(F'The chunk size {chunk_size} must exceed the signature length {n}.')
    while True:
        chunk = reader.read(chunk_size)
        if (count := len(chunk)) < n:
            return -1
        if (p := chunk.find(signature)) >= 0:
            reader.seekrel(p + n - count)
            return reader.tell() - n
        if count < chunk_size:
            return -1
        reader.seekrel(1 - n)


def identify_container(reader: StructReader, chunk_size: int = 0) -> ContainerKind:
    """
    Determine the container type of the given stream and position it at the first byte after the
    container signature. Executable stubs are scanned for an embedded format A signature first; if
    none is present, the scan is repeated for format B. Raises `rarhash.lib.exceptions.NotAContainer`
    when no signature is found and `rarhash.lib.exceptions.UnsupportedLegacyFormat` for archives
    older than version 1.50.
    """
    reader.seekset(0)
    head = reader.read(_LONGEST_SIGNATURE)
    if head.startswith(Signature.LEGACY):
        raise UnsupportedLegacyFormat
    for kind, signature in (
        (ContainerKind.FormatA, Signature.RAR3),
        (ContainerKind.FormatB, Signature.RAR5),
    ):
        if head.startswith(signature):
            reader.seekset(len(signature))
            return kind
    if head.startswith(Signature.MZ):
        for kind, signature in (
            (ContainerKind.FormatA, Signature.RAR3),
            (ContainerKind.FormatB, Signature.RAR5),
        ):
            reader.seekset(len(signature))
            if find_signature(reader, signature, chunk_size) >= 0:
                return kind
    raise NotAContainer
