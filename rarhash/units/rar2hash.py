#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Iterable

from rarhash.lib.environment import environment
from rarhash.lib.id import ContainerKind, identify_container
from rarhash.lib.rar3 import Rar3Archive
from rarhash.lib.rar5 import Rar5Archive
from rarhash.lib.structures import StructReader
from rarhash.units import Arg, Unit


class rar2hash(Unit):
    """
    Extract password verification material from encrypted RAR archives and print it as one line per
    record, in a format that is understood by offline password recovery tools. Both RAR 3.x and RAR 5.x
    archives are supported, including self-extracting executables. Errors in one archive are reported
    and processing continues with the next one.
    """
    def __init__(
        self,
        *paths: Arg.String(metavar='path', nargs='+', help='Archive files to process.'),
        strict: Arg.Switch('-s', help='Treat RAR 5.x header checksum mismatches as fatal errors.') = False,
    ):
        super().__init__(paths=paths, strict=strict or environment.strict.value)
        self.archives = 0
        self.records = 0

    def process(self, path: str) -> Iterable[str]:
        with open(path, 'rb') as stream:
            reader = StructReader(stream)
            kind = identify_container(reader)
            self.log_debug(F'{path}: identified as {kind.name} at offset {reader.tell():#x}')
            self.archives += 1
            if kind == ContainerKind.FormatA:
                records = (Rar3Archive(reader, path, self).extract(),)
            else:
                records = Rar5Archive(reader, path, self, self.args.strict).records()
            for record in records:
                self.records += 1
                yield record.format()

    def finish(self) -> Iterable[str]:
        self.log_info(F'processed {self.archives} archives, emitted {self.records} records')
        yield from ()
