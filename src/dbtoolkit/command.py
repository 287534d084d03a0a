"""
Command descriptors.

A `DbCommand` collects the command text, its kind and its parameters without
touching a connection. It is created by `DbContext.create_command`, filled in
by the caller, and later bound onto a live cursor by the provider. The
`Parameter` objects it holds are the ones the provider writes output values
back into, which is what keeps `OutputParameter` handles valid after
execution.
"""
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Self

from dbtoolkit.exceptions import ParameterNotFoundError, ProviderError
from dbtoolkit.exceptions import TypeConversionError, ValidationError
from dbtoolkit.sql import bare_name
from dbtoolkit.types import CommandType, DbType, ParameterDirection
from dbtoolkit.types import TypeConverter, change_type, default_value
from dbtoolkit.types import infer_db_type, is_null

if TYPE_CHECKING:
    from dbtoolkit.providers import Provider

__all__ = ['Parameter', 'DbCommand', 'OutputParameter']

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Parameter:
    """A named command parameter. None as value means SQL NULL."""
    name: str
    value: Any = None
    db_type: DbType = DbType.OBJECT
    direction: ParameterDirection = ParameterDirection.INPUT
    size: int | None = None
    precision: int | None = None
    scale: int | None = None

    @property
    def bare_name(self) -> str:
        return bare_name(self.name)


def _type_name(target: Any) -> str:
    return getattr(target, '__name__', repr(target))


class DbCommand:
    """Command text, command type and an ordered set of named parameters.

    Parameter names are unique within a command. A command is not safe to
    execute concurrently from several tasks.
    """

    def __init__(self, command_text: str, command_type: CommandType,
                 provider: 'Provider') -> None:
        self._command_text = command_text
        self._command_type = command_type
        self._provider = provider
        self._parameters: list[Parameter] = []

    @property
    def command_text(self) -> str:
        return self._command_text

    @property
    def command_type(self) -> CommandType:
        return self._command_type

    @property
    def parameters(self) -> tuple[Parameter, ...]:
        """The parameter objects in insertion order (not copies)."""
        return tuple(self._parameters)

    def __repr__(self) -> str:
        names = ', '.join(p.name for p in self._parameters)
        return f'DbCommand({self._command_text!r}, {self._command_type.name}, [{names}])'

    def add_parameter(self, name: str, value: Any = None, db_type: DbType | None = None,
                      direction: ParameterDirection = ParameterDirection.INPUT, *,
                      size: int | None = None, precision: int | None = None,
                      scale: int | None = None) -> Self:
        """Add a parameter, inferring its DbType from the value when not given.
        """
        if any(p.name == name for p in self._parameters):
            raise ValidationError(f"Parameter '{name}' already exists on {self._command_text!r}.")

        if db_type is None:
            db_type = infer_db_type(value)

        param = self._provider.create_parameter(
            name, TypeConverter.convert_value(value), db_type, direction)
        if param is None:
            raise ProviderError('Could not create a parameter from the provider.')

        param.size = size
        param.precision = precision
        param.scale = scale
        self._parameters.append(param)
        logger.debug(f'Added parameter {name} ({db_type.name}, {direction.name})')
        return self

    def add_output_parameter(self, name: str, db_type: DbType, *,
                             size: int | None = None, precision: int | None = None,
                             scale: int | None = None) -> 'OutputParameter':
        """Add an output parameter and return an accessor for its value after execution.

        Example
            new_id = command.add_output_parameter('@NewId', DbType.INT32)
            await context.execute_non_query_async(command)
            new_id.get_value(int)
        """
        self.add_parameter(name, None, db_type, ParameterDirection.OUTPUT,
                           size=size, precision=precision, scale=scale)
        return OutputParameter(self, name)

    def add_inout_parameter(self, name: str, value: Any, db_type: DbType, *,
                            size: int | None = None, precision: int | None = None,
                            scale: int | None = None) -> 'OutputParameter':
        """Add an input/output parameter and return an accessor for its final value.
        """
        self.add_parameter(name, value, db_type, ParameterDirection.INPUT_OUTPUT,
                           size=size, precision=precision, scale=scale)
        return OutputParameter(self, name)

    def get_parameter(self, name: str) -> Parameter:
        """Find a parameter by exact name."""
        for param in self._parameters:
            if param.name == name:
                return param
        raise ParameterNotFoundError(f"Parameter '{name}' not found.")

    def get_parameter_value(self, name: str, type_: Any = object) -> Any:
        """Get a parameter value converted to `type_`.

        A NULL value yields the type's default (0, 0.0, False, Decimal 0 or
        None) rather than an error.
        """
        param = self.get_parameter(name)
        if is_null(param.value):
            return default_value(type_)

        try:
            return change_type(param.value, type_)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise TypeConversionError(
                f"Cannot convert parameter '{name}' value to type {_type_name(type_)}.") from exc


class OutputParameter:
    """Read handle on an output or input/output parameter of a command.

    Holds the command and the parameter name only; every read goes back to
    the command's parameter, so values written during execution are visible.
    Reading before execution returns the initial value (None for output).
    """

    def __init__(self, command: DbCommand, name: str) -> None:
        self._command = command
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> Any:
        return self._command.get_parameter_value(self._name)

    def get_value(self, type_: Any = object) -> Any:
        return self._command.get_parameter_value(self._name, type_)

    def __repr__(self) -> str:
        return f'OutputParameter({self._name!r})'
