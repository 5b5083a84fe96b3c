from __future__ import annotations

from functools import singledispatchmethod
from typing import Any, Callable, Dict

import pyarrow.compute as pc

from substrait_acero.core.error import UnsupportedFeatureError
from substrait_acero.core.expressions import Call, Expression, FieldRef, Literal

_OPTION_FACTORIES: Dict[str, Callable[[Dict[str, Any]], pc.FunctionOptions]] = {
    "struct_field": lambda options: pc.StructFieldOptions(options["indices"]),
    "make_struct": lambda options: pc.MakeStructOptions(options["field_names"]),
    "cast": lambda options: pc.CastOptions(options["target_type"]),
}


class ExprConverter:
    def convert(self, expr: Expression) -> pc.Expression:
        """Convert a native expression to a ``pyarrow.compute.Expression``."""
        return self._convert_expr(expr)

    @singledispatchmethod
    def _convert_expr(self, expr: Expression) -> pc.Expression:
        raise NotImplementedError(f"Conversion not implemented for {type(expr)}")

    @_convert_expr.register
    def _convert_field_ref(self, expr: FieldRef) -> pc.Expression:
        if len(expr.path) == 1:
            return pc.field(expr.path[0])
        return pc.field(*expr.path)

    @_convert_expr.register
    def _convert_literal(self, expr: Literal) -> pc.Expression:
        return pc.scalar(expr.value)

    @_convert_expr.register
    def _convert_call(self, expr: Call) -> pc.Expression:
        arguments = [self._convert_expr(argument) for argument in expr.arguments]
        factory = _OPTION_FACTORIES.get(expr.function_name)
        if factory is not None:
            options = factory(expr.options)
        elif expr.options:
            raise UnsupportedFeatureError(
                f"Options {sorted(expr.options)} are not supported for {expr.function_name}"
            )
        else:
            options = None
        return pc.Expression._call(expr.function_name, arguments, options)
