#!/usr/bin/env python3
from __future__ import annotations

import pathlib
import re
import setuptools
import sys
import toml

__minver__ = '3.8'
__slogan__ = 'Extract password verification material from encrypted RAR archives.'
__topics__ = [
    'Development Status :: 3 - Alpha',
    'Operating System :: OS Independent',
    'Programming Language :: Python :: 3 :: Only',
    'Topic :: Security',
    'Topic :: Security :: Cryptography',
    'Topic :: System :: Archiving :: Compression'
]

BUILD_ONLY = ('setuptools', 'toml')


def get_version() -> str:
    init = pathlib.Path(__file__).parent.joinpath('rarhash', '__init__.py')
    with open(init, 'r', encoding='UTF8') as stream:
        return re.search(R'''__version__\s*=\s*['"]([^'"]+)['"]''', stream.read())[1]


def get_config():
    sys.path.insert(0, str(pathlib.Path(__file__).parent.absolute()))

    def normalize_name(name: str, separator: str = '-'):
        return separator.join([segment for segment in name.strip('_').split('_')])

    ppcfg: dict[str, dict[str, list[str]]] = toml.load('pyproject.toml')
    requirements = [
        r for r in ppcfg['build-system']['requires'] if not r.startswith(BUILD_ONLY)]

    console_scripts = [
        F'{normalize_name(name)}=rarhash.units.{name}:{name}.run'
        for name in ('rar2hash',)
    ]

    return dict(
        name='rarhash',
        version=get_version(),
        description=__slogan__,
        python_requires=F'>={__minver__}',
        classifiers=__topics__,
        packages=setuptools.find_packages(include=('rarhash*',)),
        install_requires=requirements,
        extras_require={'test': []},
        entry_points={'console_scripts': console_scripts},
    )


if __name__ == '__main__':
    setuptools.setup(**get_config())
