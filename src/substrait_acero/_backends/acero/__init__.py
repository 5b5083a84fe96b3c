from substrait_acero._backends.acero.execution import run_declaration
from substrait_acero._backends.acero.transpiler import (
    convert_declaration,
    convert_expression,
    infer_type,
    output_schema,
)

__all__ = [
    "convert_declaration",
    "convert_expression",
    "infer_type",
    "output_schema",
    "run_declaration",
]
