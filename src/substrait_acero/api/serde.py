"""Public entry points converting between serialized Substrait messages and native objects.

Every function here accepts or returns binary protobuf messages. JSON plans,
e.g. the output of other Substrait producers, can be converted first with
``substrait_from_json``.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple, Type

import pyarrow as pa
from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message

from substrait_acero.api.config import ConversionOptions
from substrait_acero.core._extensions import ExtensionIdRegistry, ExtensionSet
from substrait_acero.core._serde.proto import plan_serde
from substrait_acero.core._serde.proto.serde_context import create_serde_context
from substrait_acero.core._serde.proto.types import (
    ExpressionProto,
    NamedStructProto,
    PlanProto,
    RelProto,
    TypeProto,
)
from substrait_acero.core.declarations import Declaration, SinkNodeConsumer, WriteNodeOptions
from substrait_acero.core.error import InvalidPlanError
from substrait_acero.core.expressions import Expression

_MESSAGE_TYPES = {
    "Plan": PlanProto,
    "Rel": RelProto,
    "Expression": ExpressionProto,
    "Type": TypeProto,
    "NamedStruct": NamedStructProto,
}


def _parse(message_class: Type[Message], buf: bytes) -> Message:
    try:
        return message_class.FromString(buf)
    except DecodeError as e:
        raise InvalidPlanError(f"Failed to parse {message_class.__name__}: {e}", message_class) from e


def _load_plan(
    buf: bytes,
    registry: Optional[ExtensionIdRegistry],
    ext_set: Optional[ExtensionSet],
    options: Optional[ConversionOptions],
):
    plan_proto = _parse(PlanProto, buf)
    ext_set = ext_set if ext_set is not None else ExtensionSet(registry)
    ext_set.load_plan(plan_proto, options)
    return plan_proto, create_serde_context(ext_set, options)


# =============================================================================
# Plans
# =============================================================================


def deserialize_plans(
    buf: bytes,
    consumer_factory: Callable[[], SinkNodeConsumer],
    registry: Optional[ExtensionIdRegistry] = None,
    ext_set: Optional[ExtensionSet] = None,
    options: Optional[ConversionOptions] = None,
) -> List[Declaration]:
    """Deserialize a plan into one ``consuming_sink`` declaration per top-level relation.

    Args:
        buf: A serialized Substrait ``Plan``.
        consumer_factory: Called once per relation for the consumer of its output.
        registry: Registry resolving extension ids; the default registry if omitted.
            Ignored when ``ext_set`` is given.
        ext_set: Extension set to populate from the plan; a fresh one if omitted.
        options: Conversion options.

    Returns:
        The sink declarations, ready for ``run_declaration``.

    Raises:
        InvalidPlanError: If the plan is malformed, references unknown extensions,
            or a factory fails.
        UnsupportedFeatureError: If the plan uses a feature that cannot be lowered.

    Example:
        ```python
        consumers = []

        def make_consumer():
            consumers.append(CollectingConsumer())
            return consumers[-1]

        for declaration in deserialize_plans(plan_bytes, make_consumer):
            run_declaration(declaration)
        ```
    """
    plan_proto, context = _load_plan(buf, registry, ext_set, options)
    return plan_serde.deserialize_plans(plan_proto, consumer_factory, context)


def deserialize_plan(
    buf: bytes,
    consumer: SinkNodeConsumer,
    registry: Optional[ExtensionIdRegistry] = None,
    ext_set: Optional[ExtensionSet] = None,
    options: Optional[ConversionOptions] = None,
) -> Declaration:
    """Deserialize a single-relation plan into a ``consuming_sink`` declaration.

    Raises:
        InvalidPlanError: If the plan does not hold exactly one relation.
    """
    plan_proto, context = _load_plan(buf, registry, ext_set, options)
    if len(plan_proto.relations) != 1:
        raise InvalidPlanError(
            f"deserialize_plan requires a plan with exactly one relation, got {len(plan_proto.relations)}",
            PlanProto,
        )
    return plan_serde.deserialize_plans(plan_proto, lambda: consumer, context)[0]


def deserialize_plans_for_write(
    buf: bytes,
    write_options_factory: Callable[[], WriteNodeOptions],
    registry: Optional[ExtensionIdRegistry] = None,
    ext_set: Optional[ExtensionSet] = None,
    options: Optional[ConversionOptions] = None,
) -> List[Declaration]:
    """Deserialize a plan into one ``write`` declaration per top-level relation.

    ``write_options_factory`` is called once per relation for its destination.
    """
    plan_proto, context = _load_plan(buf, registry, ext_set, options)
    return plan_serde.deserialize_plans_for_write(plan_proto, write_options_factory, context)


def execute_serialized_plan(
    buf: bytes,
    registry: Optional[ExtensionIdRegistry] = None,
    options: Optional[ConversionOptions] = None,
) -> pa.RecordBatchReader:
    """Deserialize a single-relation plan and start executing it.

    Returns:
        A reader over the plan's output batches.

    Raises:
        InvalidPlanError: If the plan does not hold exactly one relation or is invalid.
    """
    plan_proto, context = _load_plan(buf, registry, None, options)
    info = plan_serde.single_plan_relation(plan_proto, context)
    try:
        return info.declaration.to_reader()
    except Exception as e:
        context._handle_serde_error(e)


def serialize_plan(declaration: Declaration, ext_set: Optional[ExtensionSet] = None) -> bytes:
    """Serialize a declaration tree as a plan with one root relation.

    Top-level sinks and writes are dropped; only the relation they consume is
    serialized.
    """
    context = create_serde_context(ext_set)
    return plan_serde.serialize_plan(declaration, context).SerializeToString()


# =============================================================================
# Plan components
# =============================================================================


def deserialize_relation(
    buf: bytes, ext_set: ExtensionSet, options: Optional[ConversionOptions] = None
) -> Declaration:
    """Deserialize a Substrait ``Rel`` into a declaration."""
    context = create_serde_context(ext_set, options)
    return context.deserialize_relation("rel", _parse(RelProto, buf)).declaration


def serialize_relation(declaration: Declaration, ext_set: ExtensionSet) -> bytes:
    context = create_serde_context(ext_set)
    return context.serialize_relation("rel", declaration).SerializeToString()


def deserialize_expression(
    buf: bytes, ext_set: ExtensionSet, options: Optional[ConversionOptions] = None
) -> Expression:
    """Deserialize a Substrait ``Expression``."""
    context = create_serde_context(ext_set, options)
    return context.deserialize_expression("expression", _parse(ExpressionProto, buf))


def serialize_expression(
    expr: Expression, ext_set: ExtensionSet, schema: Optional[pa.Schema] = None
) -> bytes:
    """Serialize an expression; field references must be bound.

    With ``schema`` the output types of extension function calls are filled in.
    """
    context = create_serde_context(ext_set)
    if schema is None:
        return context.serialize_expression("expression", expr).SerializeToString()
    with context.schema_context(schema):
        return context.serialize_expression("expression", expr).SerializeToString()


def deserialize_type(buf: bytes, ext_set: ExtensionSet) -> Tuple[pa.DataType, bool]:
    """Deserialize a Substrait ``Type``.

    Returns:
        The native type and whether it is nullable.
    """
    context = create_serde_context(ext_set)
    return context.deserialize_type("type", _parse(TypeProto, buf))


def serialize_type(data_type: pa.DataType, ext_set: ExtensionSet, nullable: bool = True) -> bytes:
    context = create_serde_context(ext_set)
    return context.serialize_type("type", data_type, nullable).SerializeToString()


def deserialize_schema(buf: bytes, ext_set: ExtensionSet) -> pa.Schema:
    """Deserialize a Substrait ``NamedStruct`` into a schema."""
    context = create_serde_context(ext_set)
    return context.deserialize_schema("named_struct", _parse(NamedStructProto, buf))


def serialize_schema(schema: pa.Schema, ext_set: ExtensionSet) -> bytes:
    """Serialize a schema as a Substrait ``NamedStruct``.

    Raises:
        InvalidPlanError: If the schema or any field carries metadata.
    """
    context = create_serde_context(ext_set)
    return context.serialize_schema("named_struct", schema).SerializeToString()


# =============================================================================
# JSON
# =============================================================================


def _message_type(type_name: str) -> Type[Message]:
    message_class = _MESSAGE_TYPES.get(type_name)
    if message_class is None:
        raise ValueError(f"Unknown Substrait message type '{type_name}', expected one of {sorted(_MESSAGE_TYPES)}")
    return message_class


def substrait_from_json(type_name: str, json: str) -> bytes:
    """Convert the JSON form of a Substrait message to its binary form.

    Args:
        type_name: One of ``Plan``, ``Rel``, ``Expression``, ``Type`` or ``NamedStruct``.
        json: The message in the protobuf JSON mapping.

    Raises:
        InvalidPlanError: If the JSON does not describe a message of that type.
    """
    message_class = _message_type(type_name)
    try:
        message = json_format.Parse(json, message_class())
    except json_format.ParseError as e:
        raise InvalidPlanError(f"Failed to parse {type_name} JSON: {e}", message_class) from e
    return message.SerializeToString()


def substrait_to_json(type_name: str, buf: bytes) -> str:
    """Render a binary Substrait message in the protobuf JSON mapping."""
    return json_format.MessageToJson(_parse(_message_type(type_name), buf))


def plan_from_json(json: str) -> bytes:
    return substrait_from_json("Plan", json)
