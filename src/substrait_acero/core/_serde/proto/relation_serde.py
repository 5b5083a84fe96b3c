"""Relation lowering and encoding using singledispatch.

This module provides the main dispatch functions for relations. The per-kind
implementations are organized in the relations/ subdirectory.

Deserialization lowers a wire relation to a ``Declaration`` and the schema it
produces. Serialization dispatches on the declaration's node options.
"""

import logging
from dataclasses import dataclass
from functools import singledispatch
from typing import List

import pyarrow as pa
from google.protobuf.message import Message

from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    EmitProto,
    ExpressionProto,
    RelCommonProto,
    RelProto,
)
from substrait_acero.core.declarations import (
    Declaration,
    NodeOptions,
    ProjectNodeOptions,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Expression, FieldRef

logger = logging.getLogger(__name__)

# Relation kinds that can be lowered; every other kind is rejected up front.
SUPPORTED_RELATION_KINDS = ("read", "filter", "project", "join", "aggregate")


@dataclass
class DeclarationInfo:
    """A lowered relation: the declaration and the schema it produces."""

    declaration: Declaration
    schema: pa.Schema


# =============================================================================
# Deserialization
# =============================================================================


def deserialize_relation(rel_proto: RelProto, context: SerdeContext) -> DeclarationInfo:
    """Lower a wire relation to a declaration.

    Args:
        rel_proto: The wire relation.
        context: The serde context for error reporting and path tracking.

    Returns:
        DeclarationInfo: The lowered declaration and its output schema, with
        any emit mapping applied.

    Raises:
        InvalidPlanError: If no relation kind is set or the relation is malformed.
        UnsupportedFeatureError: If the relation kind cannot be lowered.
    """
    which_oneof = rel_proto.WhichOneof("rel_type")
    if which_oneof is None:
        raise context.create_serde_error(InvalidPlanError, "Relation has no kind set", RelProto)
    if which_oneof not in SUPPORTED_RELATION_KINDS:
        raise context.create_serde_error(
            UnsupportedFeatureError, f"Relation kind '{which_oneof}' is not supported", RelProto
        )
    underlying_proto = getattr(rel_proto, which_oneof)
    with context.path_context(which_oneof):
        info = _deserialize_relation_helper(underlying_proto, context)
        logger.debug(
            f"Lowered {which_oneof} relation at {context.current_path} "
            f"to {info.declaration.factory_name} with columns {info.schema.names}"
        )
        return _apply_emit(info, underlying_proto.common, context)


@singledispatch
def _deserialize_relation_helper(underlying_proto: Message, context: SerdeContext) -> DeclarationInfo:
    """Lower the message set in the Rel oneof."""
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Deserialization not implemented for relation: {type(underlying_proto).__name__}",
        type(underlying_proto),
    )


def _apply_emit(info: DeclarationInfo, common: RelCommonProto, context: SerdeContext) -> DeclarationInfo:
    if common.WhichOneof("emit_kind") != "emit":
        return info
    mapping = list(common.emit.output_mapping)
    num_fields = len(info.schema)
    with context.path_context("common.emit"):
        for index in mapping:
            if not 0 <= index < num_fields:
                raise context.create_serde_error(
                    InvalidPlanError,
                    f"Emit index {index} is out of range for {num_fields} output columns",
                    EmitProto,
                )
    fields = [info.schema.field(index) for index in mapping]
    declaration = Declaration(
        "project",
        ProjectNodeOptions([FieldRef(index) for index in mapping], [f.name for f in fields]),
        inputs=[info.declaration],
    )
    return DeclarationInfo(declaration, pa.schema(fields))


def require_input(underlying_proto: Message, field_name: str, context: SerdeContext) -> DeclarationInfo:
    """Lower the input relation held in ``field_name``, which must be set."""
    if not underlying_proto.HasField(field_name):
        raise context.create_serde_error(
            InvalidPlanError,
            f"{type(underlying_proto).__name__} is missing its '{field_name}' relation",
            type(underlying_proto),
        )
    return context.deserialize_relation(field_name, getattr(underlying_proto, field_name))


def deserialize_predicate(
    field_name: str, expr_proto: ExpressionProto, schema: pa.Schema, context: SerdeContext
) -> Expression:
    """Deserialize a filter expression, bound to ``schema`` and checked to be boolean."""
    expression = context.deserialize_expression(field_name, expr_proto)
    with context.path_context(field_name):
        try:
            expression = expression.bind(schema)
            data_type = expression.data_type(schema)
        except Exception as e:
            context._handle_serde_error(e)
        if not pa.types.is_boolean(data_type):
            raise context.create_serde_error(
                InvalidPlanError, f"Filter expression {expression} must be boolean, got {data_type}", Expression
            )
    return expression


def unique_name(name: str, taken: List[str]) -> str:
    """``name``, suffixed ``_1``, ``_2``, ... until it differs from every name in ``taken``."""
    if name not in taken:
        return name
    suffix = 1
    while f"{name}_{suffix}" in taken:
        suffix += 1
    return f"{name}_{suffix}"


# =============================================================================
# Serialization
# =============================================================================


def serialize_relation(declaration: Declaration, context: SerdeContext) -> RelProto:
    """Encode a declaration tree as a wire relation.

    Args:
        declaration: A scan, table source, filter, project, hashjoin or
            aggregate declaration.
        context: The serde context for error reporting and path tracking.

    Returns:
        RelProto: The wire relation.

    Raises:
        UnsupportedFeatureError: If a node has no wire relation equivalent.
    """
    return _serialize_relation_helper(declaration.options, declaration, context)


@singledispatch
def _serialize_relation_helper(
    options: NodeOptions, declaration: Declaration, context: SerdeContext
) -> RelProto:
    """Encode one declaration, dispatching on its node options."""
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Serialization not implemented for {declaration.factory_name} declarations",
        type(options),
    )


# Import all relation modules to register their serde functions
from substrait_acero.core._serde.proto.relations import (  # noqa: F401, E402
    aggregate,
    join,
    read,
    transform,
)
