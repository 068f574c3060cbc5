"""
This package contains the command line units of rarhash. To write an executable unit, it is
sufficient to write a class inheriting from `rarhash.units.Unit` which implements the method
`rarhash.units.Unit.process`: It receives one input at a time and generates output lines.

### Command Line Parameters

The parameters of the `__init__` method of a unit are turned into command line arguments. They can
be annotated with `rarhash.units.Arg` to control the argument parser. For example:

    from rarhash.units import Arg, Unit

    class lister(Unit):
        def __init__(self, *paths: Arg(metavar='path', help='Files to list.')):
            super().__init__(paths=paths)

        def process(self, path):
            yield path

The keywords passed to `rarhash.units.Unit.__init__` are stored in the `args` member of the unit.
The inherited `rarhash.units.Unit.run` method implements execution from the command line.

### Logging and Errors

Units log through the classmethods `rarhash.units.Unit.log_fail`, `rarhash.units.Unit.log_warn`,
`rarhash.units.Unit.log_info`, and `rarhash.units.Unit.log_debug`. An error that occurs while one
input is processed is reported and processing continues with the next input. A unit which has been
instantiated in code is detached from its logger by default, and such errors are raised to the
caller instead.
"""
from __future__ import annotations

import abc
import inspect
import sys

from abc import ABCMeta
from argparse import ONE_OR_MORE, OPTIONAL, ZERO_OR_MORE, Namespace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator

from rarhash.lib.argparser import ArgparseError, ArgumentParserWithKeywordHooks
from rarhash.lib.environment import LogLevel, Logger, environment, logger
from rarhash.lib.exceptions import RarHashException
from rarhash.lib.tools import (
    documentation,
    exception_to_string,
    normalize_to_display,
    normalize_to_identifier,
    skipfirst,
)

if TYPE_CHECKING:
    from typing import Self


class Argument:
    """
    This class implements an abstract argument to a Python function, including positional
    and keyword arguments. Passing an `Argument` to a Python function can be done via the
    matrix multiplication operator: The syntax `function @ Argument(a, b, kwd=c)` is
    equivalent to the call `function(a, b, kwd=c)`.
    """
    __slots__ = 'args', 'kwargs'

    args: list[Any]
    kwargs: dict[str, Any]

    def __init__(self, *args, **kwargs):
        self.args = list(args)
        self.kwargs = kwargs

    def __rmatmul__(self, method):
        return method(*self.args, **self.kwargs)

    def __repr__(self):
        arglist = [repr(a) for a in self.args]
        arglist.extend(F'{key!s}={value!r}' for key, value in self.kwargs.items())
        return ', '.join(arglist)


class Arg(Argument):
    """
    This class is specifically an argument for the `add_argument` method of an `ArgumentParser` from
    the `argparse` module. It is used as an annotation for the constructor of a unit to control the
    argument parser of that unit's command line interface. Example:
    ```
    class counter(Unit):
        def __init__(
            self,
            strict: Arg.Switch('-s', help='Fail on the first problem.') = False
        ): ...
    ```
    """

    class omit:
        """
        A sentinel class to mark arguments as omitted for the argument parser.
        """

    args: list[str]

    __slots__ = ()

    def __init__(
        self, *args: str,
        action   : type[omit] | str                       = omit,  # noqa
        choices  : type[omit] | Iterable[Any]             = omit,  # noqa
        const    : type[omit] | Any                       = omit,  # noqa
        default  : type[omit] | Any                       = omit,  # noqa
        dest     : type[omit] | str                       = omit,  # noqa
        help     : type[omit] | str                       = omit,  # noqa
        metavar  : type[omit] | str                       = omit,  # noqa
        nargs    : type[omit] | int | str                 = omit,  # noqa
        required : type[omit] | bool                      = omit,  # noqa
        type     : type[omit] | type | Callable           = omit,  # noqa
    ) -> None:
        kwargs = dict(action=action, choices=choices, const=const, default=default, dest=dest,
            help=help, metavar=metavar, nargs=nargs, required=required, type=type)
        kwargs = {key: value for key, value in kwargs.items() if value is not self.omit}
        super().__init__(*args, **kwargs)

    @classmethod
    def Switch(
        cls,
        *args   : str,
        help    : type[omit] | str = omit,
        dest    : type[omit] | str = omit,
    ):
        """
        A convenience method to add argparse arguments that change a boolean value from False to True
        when specified.
        """
        return cls(*args, help=help, dest=dest, action='store_true')

    @classmethod
    def String(
        cls,
        *args   : str,
        help    : type[omit] | str = omit,
        dest    : type[omit] | str = omit,
        nargs   : type[omit] | int | str = omit,
        metavar : type[omit] | str = omit,
    ):
        """
        Used to add argparse arguments that contain a string.
        """
        return cls(*args, help=help, dest=dest, nargs=nargs, metavar=metavar, type=str)

    @property
    def positional(self) -> bool:
        """
        Indicates whether the argument is positional. This is crudely determined by whether it has
        a specifier that does not start with a dash.
        """
        return any(a[0] != '-' for a in self.args)

    @property
    def destination(self) -> str:
        """
        The name of the variable where the contents of this parsed argument will be stored.
        """
        for a in self.args:
            if a[0] != '-':
                return a
        try:
            return self.kwargs['dest']
        except KeyError:
            for a in self.args:
                if a.startswith('--'):
                    dest = normalize_to_identifier(a)
                    if dest.isidentifier():
                        return dest
            raise AttributeError(F'The argument with these values has no destination: {self!r}')

    @classmethod
    def Infer(cls, pt: inspect.Parameter, module: str | None = None):
        """
        This class method can be used to infer the argparse argument for a Python function
        parameter. This guess is based on the annotation, name, and default value.
        """
        name = normalize_to_display(pt.name, False)
        default = pt.default
        empty = pt.empty
        annotation = pt.annotation
        pos_args: list[str] = []
        kwd_args: dict[str, Any] = dict(dest=pt.name)
        if isinstance(annotation, str):
            symbols = None if module is None else sys.modules[module].__dict__
            try:
                annotation = eval(annotation, symbols)
            except Exception:
                annotation = empty

        if isinstance(annotation, Arg):
            if annotation.kwargs.get('dest', pt.name) != pt.name:
                raise ValueError(
                    F'Incompatible argument destination specified; parameter {pt.name} '
                    F'was annotated with {annotation!r}.')
            pos_args = list(annotation.args)
            kwd_args.update(annotation.kwargs)

        if not pos_args:
            pos_args = [F'--{name}' if pt.kind is pt.KEYWORD_ONLY else pt.name]

        if pt.kind is pt.VAR_POSITIONAL:
            nargs = kwd_args.setdefault('nargs', ZERO_OR_MORE)
            if nargs not in (ONE_OR_MORE, ZERO_OR_MORE):
                raise ValueError(F'Variadic positional arguments has nargs set to {nargs!r}')
        elif default is not empty:
            kwd_args.setdefault('default', default)
            if isinstance(default, bool):
                kwd_args.setdefault('action', F'store_{not default!s}'.lower())

        return cls(*pos_args, **kwd_args)

    def __repr__(self) -> str:
        return F'Arg({super().__repr__()})'


class Executable(ABCMeta):
    """
    This is the metaclass for rarhash units. It infers the command line interface of the unit from
    its `__init__` parameters.
    """

    _argument_specification: dict[str, Arg]

    def _infer_argspec(cls, parameters: dict[str, inspect.Parameter], module: str) -> dict[str, Arg]:
        args: dict[str, Arg] = {}
        for pt in skipfirst(parameters.values()):
            if pt.kind is pt.VAR_KEYWORD:
                continue
            args[pt.name] = known = Arg.Infer(pt, module)
            kwargs = known.kwargs
            if known.positional:
                kwargs.pop('dest', None)
                if 'default' in kwargs and kwargs.get('action', 'store') == 'store':
                    kwargs.setdefault('nargs', OPTIONAL)
            elif not any(len(a) > 2 for a in known.args):
                flagname = normalize_to_display(known.destination, False)
                known.args.append(F'--{flagname}')
            if kwargs.get('action', 'store').startswith('store_'):
                kwargs.pop('default', None)
        return args

    def __new__(mcs, name: str, bases: tuple[type, ...], nmspc: dict[str, Any], abstract=False):
        nmspc.setdefault('__doc__', '')
        return super().__new__(mcs, name, bases, nmspc)

    def __init__(cls, name: str, bases: tuple[type, ...], nmspc: dict[str, Any], abstract=False):
        super().__init__(name, bases, nmspc)
        parameters = inspect.signature(cls.__init__).parameters

        if abstract:
            cls._argument_specification = {}
            return

        cls._argument_specification = cls._infer_argspec(parameters, cls.__module__)

        if sys.modules[cls.__module__].__name__ == '__main__':
            cls.run()

    @property
    def name(cls) -> str:
        """
        The name of the unit as it would be used on the command line.
        """
        return normalize_to_display(cls.__name__)

    @property
    def logger(cls) -> Logger:
        """
        The debug logger instance for the unit.
        """
        try:
            return cls._logger
        except AttributeError:
            pass
        cls._logger = _logger = logger(cls.name)
        return _logger


class Unit(metaclass=Executable, abstract=True):
    """
    The base class for all rarhash command line units.
    """

    @abc.abstractmethod
    def process(self, source: str, /) -> Iterable[str]:
        """
        Process a single input and generate output lines.
        """

    def inputs(self) -> Iterable[str]:
        """
        The inputs of the unit; by default, these are stored in the `paths` argument.
        """
        return self.args.paths

    def finish(self) -> Iterable[str]:
        """
        Called after all inputs were processed; may generate trailing output.
        """
        yield from ()

    def __init__(self, **keywords):
        for key, value in dict(verbose=0, quiet=False).items():
            keywords.setdefault(key, value)
        self.args = Namespace(**keywords)
        self.log_detach()

    @property
    def logger(self) -> Logger:
        """
        Proxy to `rarhash.units.Executable.logger`.
        """
        logger: Logger = self.__class__.logger
        return logger

    @property
    def name(self) -> str:
        """
        Proxy to `rarhash.units.Executable.name`.
        """
        return self.__class__.name

    @property
    def is_quiet(self) -> bool:
        """
        Returns whether the global `--quiet` flag is set, indicating that the unit should not
        generate any log output.
        """
        return getattr(self.args, 'quiet', False)

    @property
    def log_level(self) -> LogLevel:
        """
        Returns the current log level as an element of `rarhash.lib.environment.LogLevel`.
        """
        if self.is_quiet:
            return LogLevel.NONE
        return LogLevel(self.logger.getEffectiveLevel())

    @log_level.setter
    def log_level(self, value: int | LogLevel) -> None:
        if not isinstance(value, LogLevel):
            value = LogLevel.FromVerbosity(value)
        self.logger.setLevel(value)

    def log_detach(self) -> Self:
        """
        Detach the unit from its logger, which means that any exceptions that occur while an input
        is processed are raised to the caller.
        """
        self.log_level = LogLevel.DETACHED
        return self

    def _exception_handler(self, exception: BaseException, source: str):
        if self.log_level >= LogLevel.DETACHED:
            raise exception
        elif isinstance(exception, RarHashException):
            self.log_fail(F'{source}:', exception)
        elif isinstance(exception, OSError):
            self.log_fail(F'{source}: {exception.strerror or exception_to_string(exception)}')
        else:
            explanation = exception_to_string(exception)
            self.log_fail(F'{source}: exception of type {exception.__class__.__name__}; {explanation}')
        if self.log_debug():
            import traceback
            traceback.print_exc(file=sys.stderr)

    def __iter__(self) -> Iterator[str]:
        for source in self.inputs():
            try:
                yield from self.process(source)
            except KeyboardInterrupt:
                raise
            except Exception as E:
                self._exception_handler(E, source)
        yield from self.finish()

    @classmethod
    def log_fail(cls, *messages) -> bool:
        """
        Log the message if and only if the current log level is at least `rarhash.lib.environment.LogLevel.ERROR`.
        """
        rv = cls.logger.isEnabledFor(LogLevel.ERROR)
        if rv and messages:
            cls.logger.error(cls._output(*messages))
        return rv

    @classmethod
    def log_warn(cls, *messages) -> bool:
        """
        Log the message if and only if the current log level is at least `rarhash.lib.environment.LogLevel.WARN`.
        """
        rv = cls.logger.isEnabledFor(LogLevel.WARNING)
        if rv and messages:
            cls.logger.warning(cls._output(*messages))
        return rv

    @classmethod
    def log_info(cls, *messages) -> bool:
        """
        Log the message if and only if the current log level is at least `rarhash.lib.environment.LogLevel.INFO`.
        """
        rv = cls.logger.isEnabledFor(LogLevel.INFO)
        if rv and messages:
            cls.logger.info(cls._output(*messages))
        return rv

    @classmethod
    def log_debug(cls, *messages) -> bool:
        """
        Log the message if and only if the current log level is at least `rarhash.lib.environment.LogLevel.DEBUG`.
        """
        rv = cls.logger.isEnabledFor(LogLevel.DEBUG)
        if rv and messages:
            cls.logger.debug(cls._output(*messages))
        return rv

    @classmethod
    def _output(cls, *messages) -> str:
        def transform(message):
            if callable(message):
                message = message()
            if isinstance(message, Exception):
                message = exception_to_string(message)
            if isinstance(message, str):
                return message
            if isinstance(message, (bytes, bytearray, memoryview)):
                return bytes(message).hex().upper()
            import pprint
            return pprint.pformat(message)
        return ' '.join(transform(msg) for msg in messages)

    @classmethod
    def _interface(cls, argp: ArgumentParserWithKeywordHooks) -> ArgumentParserWithKeywordHooks:
        """
        Receives a reference to an argument parser. This parser will be used to parse
        the command line for this unit into the member variable called `args`.
        """
        base = argp.add_argument_group('generic options')
        base.add_argument('-h', '--help', action='help', help='Show this help message and exit.')
        base.add_argument('-Q', '--quiet', action='store_true', help='Disables all log output.')
        base.add_argument('-v', '--verbose', action='count', default=0,
            help='Specify up to two times to increase log level.')

        for argument in cls._argument_specification.values():
            _ = argp.add_argument @ argument

        return argp

    @classmethod
    def argparser(cls, **keywords):
        argp = ArgumentParserWithKeywordHooks(
            keywords, prog=cls.name, description=documentation(cls), add_help=False)
        return cls._interface(argp)

    @classmethod
    def assemble(cls, *_args: str, **keywords):
        """
        Creates a unit from the given arguments and keywords. The given keywords are used to overwrite any
        previously specified defaults for the argument parser of the unit, then this modified parser is
        used to parse the given list of arguments as though they were given on the command line. The parser
        results are used to construct an instance of the unit, this object is consequently returned.
        """
        argp = cls.argparser(**keywords)
        args = vars(argp.parse_args(_args))
        quiet = args.pop('quiet')
        verbose = args.pop('verbose')
        positional = []
        parameters = inspect.signature(cls.__init__).parameters
        for p in skipfirst(parameters.values()):
            if p.kind is p.VAR_POSITIONAL:
                positional.extend(args.pop(p.name, ()))
        try:
            unit = cls(*positional, **args)
        except ValueError as E:
            argp.error(str(E))
        else:
            unit.args.quiet = quiet
            unit.args.verbose = verbose
            unit.log_level = LogLevel.NONE if quiet else verbose
            return unit

    @classmethod
    def run(cls, argv=None, stream=None) -> None:
        """
        Implements command line execution: The unit is assembled from the command line and every
        line of its output is written to the given stream, which defaults to standard output.
        """
        argv = argv if argv is not None else sys.argv[1:]

        try:
            unit = cls.assemble(*argv)
        except ArgparseError as ap:
            ap.parser.error_commandline(str(ap))
            return
        except Exception as msg:
            cls.logger.critical(cls._output('initialization failed:', msg))
            return

        loglevel = environment.verbosity.value
        if loglevel and not unit.is_quiet:
            unit.log_level = loglevel

        output = stream if stream is not None else sys.stdout.buffer

        try:
            for line in unit:
                output.write(line.encode('utf8', 'surrogateescape'))
                output.write(B'\n')
            output.flush()
        except KeyboardInterrupt:
            unit.logger.warning('aborting due to keyboard interrupt')
        except BrokenPipeError:
            pass
