"""substrait-acero: translate Substrait plans to and from Arrow Acero declarations."""

from substrait_acero._backends.acero import run_declaration
from substrait_acero.api import (
    ConversionOptions,
    ConversionStrictness,
    deserialize_expression,
    deserialize_plan,
    deserialize_plans,
    deserialize_plans_for_write,
    deserialize_relation,
    deserialize_schema,
    deserialize_type,
    execute_serialized_plan,
    plan_from_json,
    serialize_expression,
    serialize_plan,
    serialize_relation,
    serialize_schema,
    serialize_type,
    substrait_from_json,
    substrait_to_json,
)
from substrait_acero.core._extensions import (
    ExtensionIdRegistry,
    ExtensionSet,
    Id,
    default_extension_id_registry,
    make_extension_id_registry,
)
from substrait_acero.core.declarations import (
    Aggregate,
    AggregateNodeOptions,
    CollectingConsumer,
    ConsumingSinkNodeOptions,
    Declaration,
    FilterNodeOptions,
    HashJoinNodeOptions,
    JoinKeyCmp,
    JoinType,
    ProjectNodeOptions,
    ScanNodeOptions,
    SinkNodeConsumer,
    TableSourceNodeOptions,
    WriteNodeOptions,
)
from substrait_acero.core.error import (
    InvalidPlanError,
    SerdeError,
    SubstraitAceroError,
    UnsupportedFeatureError,
)
from substrait_acero.core.expressions import (
    Call,
    Expression,
    FieldRef,
    Literal,
    call,
    field_ref,
    literal,
)
from substrait_acero.logging import configure_logging

__all__ = [
    # Conversion
    "ConversionOptions",
    "ConversionStrictness",
    "deserialize_expression",
    "deserialize_plan",
    "deserialize_plans",
    "deserialize_plans_for_write",
    "deserialize_relation",
    "deserialize_schema",
    "deserialize_type",
    "execute_serialized_plan",
    "plan_from_json",
    "serialize_expression",
    "serialize_plan",
    "serialize_relation",
    "serialize_schema",
    "serialize_type",
    "substrait_from_json",
    "substrait_to_json",
    "run_declaration",
    # Extensions
    "ExtensionIdRegistry",
    "ExtensionSet",
    "Id",
    "default_extension_id_registry",
    "make_extension_id_registry",
    # Declarations
    "Aggregate",
    "AggregateNodeOptions",
    "CollectingConsumer",
    "ConsumingSinkNodeOptions",
    "Declaration",
    "FilterNodeOptions",
    "HashJoinNodeOptions",
    "JoinKeyCmp",
    "JoinType",
    "ProjectNodeOptions",
    "ScanNodeOptions",
    "SinkNodeConsumer",
    "TableSourceNodeOptions",
    "WriteNodeOptions",
    # Expressions
    "Call",
    "Expression",
    "FieldRef",
    "Literal",
    "call",
    "field_ref",
    "literal",
    # Errors
    "InvalidPlanError",
    "SerdeError",
    "SubstraitAceroError",
    "UnsupportedFeatureError",
    # Logging
    "configure_logging",
]
