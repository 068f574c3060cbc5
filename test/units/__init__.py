from __future__ import annotations

from .. import rarhash, TestBase
from rarhash.lib.environment import LogLevel
from rarhash.units import Unit

__all__ = ['rarhash', 'TestUnitBase']


class TestUnitBase(TestBase):

    @classmethod
    def unit(cls) -> type[Unit]:
        name = cls.__module__.rsplit('.', 1)[-1]
        if name.startswith('test_'):
            name = name[5:]
        return getattr(rarhash, name)

    @classmethod
    def load(cls, *args, detached=True, **kwargs) -> Unit:
        unit = cls.unit().assemble(*args, **kwargs)
        if detached:
            unit.log_level = LogLevel.DETACHED
        return unit
