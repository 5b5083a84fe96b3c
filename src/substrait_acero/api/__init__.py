"""Public conversion API: options and the serialize/deserialize entry points."""

from substrait_acero.api.config import ConversionOptions, ConversionStrictness
from substrait_acero.api.serde import (
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

__all__ = [
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
]
