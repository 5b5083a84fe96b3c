"""Native expression tree targeted by the expression codec.

Expressions are plain, comparable objects: a field reference, a literal
scalar, or a call of a ``pyarrow.compute`` function. Field references may
name fields or index them; ``bind`` resolves names against a schema so two
expressions referring to the same field compare equal. Lowering to
``pyarrow.compute.Expression`` happens in the Acero backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pyarrow as pa

from substrait_acero.core.error import InvalidPlanError

PathElement = Union[int, str]


class Expression(ABC):
    """Abstract base class for native expressions."""

    @abstractmethod
    def __str__(self):
        """String representation of the expression."""
        pass

    @abstractmethod
    def children(self) -> List[Expression]:
        """Returns the children of the expression. Returns an empty list if the expression has no children."""
        pass

    @abstractmethod
    def bind(self, schema: pa.Schema) -> Expression:
        """Returns an equivalent expression whose field references are index paths into ``schema``."""
        pass

    def __eq__(self, other: Expression) -> bool:
        if not isinstance(other, Expression):
            return False
        if type(self) is not type(other):
            return False
        if not self._eq_specific(other):
            return False
        self_children = self.children()
        other_children = other.children()
        if len(self_children) != len(other_children):
            return False
        return all(
            child1 == child2
            for child1, child2 in zip(self_children, other_children, strict=True)
        )

    def __repr__(self) -> str:
        return str(self)

    @abstractmethod
    def _eq_specific(self, other: Expression) -> bool:
        """Returns True if the expression has equal non expression attributes to the other expression."""
        pass

    def data_type(self, schema: pa.Schema) -> pa.DataType:
        """The type this expression evaluates to against ``schema``."""
        from substrait_acero._backends.acero.transpiler import infer_type

        return infer_type(self, schema)


class FieldRef(Expression):
    """Reference to a (possibly nested) field by a path of names and/or indices."""

    def __init__(self, *path: PathElement):
        if not path:
            raise ValueError("FieldRef requires at least one path element")
        self.path: Tuple[PathElement, ...] = tuple(path)

    def __str__(self):
        return "FieldRef(" + ", ".join(repr(element) for element in self.path) + ")"

    def children(self) -> List[Expression]:
        return []

    def _eq_specific(self, other: FieldRef) -> bool:
        return self.path == other.path

    @property
    def is_bound(self) -> bool:
        return all(isinstance(element, int) for element in self.path)

    def bind(self, schema: pa.Schema) -> FieldRef:
        return FieldRef(*self.resolve(schema)[0])

    def resolve(self, schema: pa.Schema) -> Tuple[List[int], pa.Field]:
        """Resolve the path against ``schema``.

        Returns:
            The index path and the referenced field.

        Raises:
            InvalidPlanError: If a name is missing or ambiguous, an index is out of
                range, or the path descends into a non-struct field.
        """
        fields: Optional[List[pa.Field]] = list(schema)
        indices: List[int] = []
        referenced: Optional[pa.Field] = None
        for element in self.path:
            if fields is None:
                raise InvalidPlanError(
                    f"{self} descends into non-struct field '{referenced.name}' of type {referenced.type}"
                )
            if isinstance(element, str):
                matches = [i for i, f in enumerate(fields) if f.name == element]
                if len(matches) != 1:
                    problem = "No field" if not matches else "Ambiguous field"
                    raise InvalidPlanError(
                        f"{problem} named '{element}' for {self} among {[f.name for f in fields]}"
                    )
                index = matches[0]
            else:
                if not 0 <= element < len(fields):
                    raise InvalidPlanError(
                        f"Field index {element} of {self} is out of range for {len(fields)} fields"
                    )
                index = element
            indices.append(index)
            referenced = fields[index]
            if pa.types.is_struct(referenced.type):
                fields = [referenced.type.field(i) for i in range(referenced.type.num_fields)]
            else:
                fields = None
        return indices, referenced

    def data_type(self, schema: pa.Schema) -> pa.DataType:
        return self.resolve(schema)[1].type


class Literal(Expression):
    """A constant scalar value."""

    def __init__(self, value: pa.Scalar):
        self.value = value

    def __str__(self):
        return f"Literal({self.value.type}: {self.value})"

    @property
    def type(self) -> pa.DataType:
        return self.value.type

    def children(self) -> List[Expression]:
        return []

    def _eq_specific(self, other: Literal) -> bool:
        return self.value.type == other.value.type and self.value.equals(other.value)

    def bind(self, schema: pa.Schema) -> Literal:
        return self

    def data_type(self, schema: pa.Schema) -> pa.DataType:
        return self.value.type


class Call(Expression):
    """Call of a ``pyarrow.compute`` function.

    ``options`` holds the keyword arguments of the function's options class, e.g.
    ``{"indices": [1, 0]}`` for ``struct_field``, ``{"field_names": [...]}`` for
    ``make_struct`` and ``{"target_type": pa.int64()}`` for ``cast``.
    """

    def __init__(
        self,
        function_name: str,
        arguments: Sequence[Expression],
        options: Optional[Dict[str, Any]] = None,
    ):
        self.function_name = function_name
        self.arguments: List[Expression] = list(arguments)
        self.options: Dict[str, Any] = dict(options or {})

    def __str__(self):
        rendered = ", ".join(str(argument) for argument in self.arguments)
        if self.options:
            rendered += ", " + ", ".join(f"{k}={v}" for k, v in self.options.items())
        return f"{self.function_name}({rendered})"

    def children(self) -> List[Expression]:
        return self.arguments

    def _eq_specific(self, other: Call) -> bool:
        return self.function_name == other.function_name and self.options == other.options

    def bind(self, schema: pa.Schema) -> Call:
        return Call(
            self.function_name,
            [argument.bind(schema) for argument in self.arguments],
            self.options,
        )


def field_ref(*path: PathElement) -> FieldRef:
    return FieldRef(*path)


def literal(value: Any, data_type: Optional[pa.DataType] = None) -> Literal:
    """Create a literal from a scalar or a Python value (optionally typed)."""
    if isinstance(value, pa.Scalar):
        return Literal(value)
    return Literal(pa.scalar(value, type=data_type))


def call(function_name: str, *arguments: Expression, **options: Any) -> Call:
    return Call(function_name, arguments, options)
