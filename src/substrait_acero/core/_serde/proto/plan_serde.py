"""Plan-level serialization/deserialization.

A plan holds one relation per top-level statement. Each lowered statement is
capped with a sink or write declaration obtained from a caller-supplied
factory; the serialize path strips those caps again.
"""

import logging
from typing import Any, Callable, List

import pyarrow as pa

from substrait_acero.core._serde.proto.datatype_serde import flatten_names, name_fields
from substrait_acero.core._serde.proto.relation_serde import DeclarationInfo
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    PlanProto,
    PlanRelProto,
    RelRootProto,
)
from substrait_acero.core.declarations import (
    ConsumingSinkNodeOptions,
    Declaration,
    ProjectNodeOptions,
    SinkNodeConsumer,
    WriteNodeOptions,
)
from substrait_acero.core.error import InvalidPlanError
from substrait_acero.core.expressions import Call, Expression, FieldRef

logger = logging.getLogger(__name__)

_SINK_FACTORIES = ("consuming_sink", "write")


# =============================================================================
# Deserialization
# =============================================================================


def deserialize_plan_relations(plan_proto: PlanProto, context: SerdeContext) -> List[DeclarationInfo]:
    """Lower every top-level relation of a plan.

    The context's extension set must already hold the plan's declarations.

    Raises:
        InvalidPlanError: If a relation is malformed or its root names don't fit.
        UnsupportedFeatureError: If a relation uses an unsupported feature.
    """
    infos = []
    with context.path_context(SerdeContext.RELATIONS):
        for i, plan_rel in enumerate(plan_proto.relations):
            with context.path_context(f"[{i}]"):
                infos.append(_deserialize_plan_rel(plan_rel, context))
    logger.debug(f"Lowered {len(infos)} plan relation(s)")
    return infos


def _deserialize_plan_rel(plan_rel: PlanRelProto, context: SerdeContext) -> DeclarationInfo:
    rel_type = plan_rel.WhichOneof("rel_type")
    if rel_type == "rel":
        return context.deserialize_relation(SerdeContext.REL, plan_rel.rel)
    if rel_type == "root":
        with context.path_context(SerdeContext.ROOT):
            if not plan_rel.root.HasField(SerdeContext.INPUT):
                raise context.create_serde_error(
                    InvalidPlanError, "Plan root has no input relation", RelRootProto
                )
            info = context.deserialize_relation(SerdeContext.INPUT, plan_rel.root.input)
            return _apply_root_names(info, plan_rel.root.names, context)
    raise context.create_serde_error(InvalidPlanError, "Plan relation has no relation set", PlanRelProto)


def _apply_root_names(info: DeclarationInfo, names: List[str], context: SerdeContext) -> DeclarationInfo:
    """Rename the output columns, and any struct fields within them, to the root names."""
    if not names:
        return info
    with context.path_context("names"):
        renamed = name_fields(list(info.schema), names, context)
    if renamed == list(info.schema):
        return info
    expressions: List[Expression] = []
    for i, (field, new_field) in enumerate(zip(info.schema, renamed, strict=True)):
        expr: Expression = FieldRef(i)
        if field.type != new_field.type:
            expr = Call("cast", [expr], {"target_type": new_field.type})
        expressions.append(expr)
    declaration = Declaration(
        "project",
        ProjectNodeOptions(expressions, [field.name for field in renamed]),
        inputs=[info.declaration],
    )
    return DeclarationInfo(declaration, pa.schema(renamed))


def deserialize_plans(
    plan_proto: PlanProto,
    consumer_factory: Callable[[], SinkNodeConsumer],
    context: SerdeContext,
) -> List[Declaration]:
    """Lower a plan to one ``consuming_sink`` declaration per top-level relation.

    Raises:
        InvalidPlanError: If the factory fails or returns None, or the plan is invalid.
    """
    declarations = []
    for i, info in enumerate(deserialize_plan_relations(plan_proto, context)):
        consumer = _call_factory(consumer_factory, "consumer", i, context)
        declarations.append(
            Declaration("consuming_sink", ConsumingSinkNodeOptions(consumer), inputs=[info.declaration])
        )
    return declarations


def deserialize_plans_for_write(
    plan_proto: PlanProto,
    write_options_factory: Callable[[], WriteNodeOptions],
    context: SerdeContext,
) -> List[Declaration]:
    """Lower a plan to one ``write`` declaration per top-level relation.

    Raises:
        InvalidPlanError: If the factory fails or returns None, or the plan is invalid.
    """
    declarations = []
    for i, info in enumerate(deserialize_plan_relations(plan_proto, context)):
        write_options = _call_factory(write_options_factory, "write options", i, context)
        if not isinstance(write_options, WriteNodeOptions):
            raise context.create_serde_error(
                InvalidPlanError,
                f"Write options factory returned {type(write_options).__name__}, expected WriteNodeOptions",
                WriteNodeOptions,
            )
        declarations.append(Declaration("write", write_options, inputs=[info.declaration]))
    return declarations


def single_plan_relation(plan_proto: PlanProto, context: SerdeContext) -> DeclarationInfo:
    """Lower a plan that must hold exactly one top-level relation."""
    if len(plan_proto.relations) != 1:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Expected a plan with exactly one relation, got {len(plan_proto.relations)}",
            PlanProto,
        )
    return deserialize_plan_relations(plan_proto, context)[0]


def _call_factory(factory: Callable[[], Any], description: str, index: int, context: SerdeContext) -> Any:
    try:
        produced = factory()
    except Exception as e:
        raise context.create_serde_error(
            InvalidPlanError, f"The {description} factory failed for relation {index}: {e}", type(factory)
        ) from e
    if produced is None:
        raise context.create_serde_error(
            InvalidPlanError, f"The {description} factory returned no {description} for relation {index}", type(factory)
        )
    return produced


# =============================================================================
# Serialization
# =============================================================================


def serialize_plan(declaration: Declaration, context: SerdeContext) -> PlanProto:
    """Encode a declaration tree as a plan with a single root relation.

    Sinks and writes at the top of the tree are stripped. The extension URIs
    and declarations accumulated in the context's extension set are written
    into the plan.
    """
    while declaration.factory_name in _SINK_FACTORIES:
        declaration = declaration.input
    with context.path_context(SerdeContext.RELATIONS), context.path_context("[0]"):
        with context.path_context(SerdeContext.ROOT):
            rel = context.serialize_relation(SerdeContext.INPUT, declaration)
            try:
                names = flatten_names(declaration.output_schema())
            except Exception as e:
                context._handle_serde_error(e)
    plan = PlanProto(relations=[PlanRelProto(root=RelRootProto(input=rel, names=names))])
    context.extension_set.add_to_plan(plan)
    return plan
