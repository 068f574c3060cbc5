"""
The rarhash package extracts password verification material from encrypted RAR archives so that
candidate passwords can be tested offline. It never decompresses anything: it walks the header
chain of an archive and prints one line per record. The command line interface is provided by the
unit `rarhash.units.rar2hash.rar2hash`.

To better understand how archives are processed, it is recommended to study the following library
modules:

1. `rarhash.lib.id`: identification of containers and self-extracting executables
2. `rarhash.lib.rar3`: parsing of RAR 3.x headers and selection of the best encrypted entry
3. `rarhash.lib.rar5`: parsing of RAR 5.x headers and their encryption parameters
4. `rarhash.lib.records`: the output line formats
"""
from __future__ import annotations

__version__ = '0.1.0'
__distribution__ = 'rarhash'

from rarhash.units import Arg, Unit
from rarhash.units.rar2hash import rar2hash

__all__ = ['Arg', 'Unit', 'rar2hash', '__version__', '__distribution__']
