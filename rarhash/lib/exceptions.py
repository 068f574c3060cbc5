"""
Exceptions raised by the rarhash parsers. Every parse error is local to one archive: the command
line unit reports it and continues with the next input.
"""
from __future__ import annotations


class RarHashException(Exception):
    """
    Base class for all exceptions raised while extracting password verification material.
    """


class NotAContainer(RarHashException, ValueError):
    """
    No known container signature was found in the input.
    """
    def __init__(self, message: str = 'Not a RAR file'):
        super().__init__(message)


class UnsupportedLegacyFormat(NotAContainer):
    def __init__(self):
        super().__init__('Too old RAR file version (pre 1.50), not supported.')


class TruncatedRead(RarHashException, EOFError):
    """
    Fewer bytes were available than a fixed or declared length required.
    """


class MalformedHeader(RarHashException, ValueError):
    pass


class VarintOverflow(MalformedHeader):
    def __init__(self, size: int):
        super().__init__(F'Variable length integer was not terminated after {size} bytes.')
        self.size = size


class UnsupportedFeature(RarHashException, NotImplementedError):
    pass


class NoCandidateFound(RarHashException, LookupError):
    def __init__(self, name: str):
        super().__init__(F'Did not find a valid encrypted candidate in {name}')
        self.name = name
