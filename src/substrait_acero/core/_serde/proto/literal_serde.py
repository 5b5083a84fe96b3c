"""Literal serialization/deserialization between wire literals and pyarrow scalars."""

import decimal
from functools import singledispatch
from typing import Callable, Dict

import pyarrow as pa

from substrait_acero.core._serde.proto.datatype_serde import check_decimal, check_length
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import LiteralProto, TypeProto
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.types.extension_types import (
    FixedCharType,
    IntervalDayType,
    IntervalYearType,
    UuidType,
    VarCharType,
)

_DECIMAL_WIDTH = 16
# Wide enough to rescale any 128-bit decimal exactly
_DECIMAL_CONTEXT = decimal.Context(prec=80)


# =============================================================================
# Top-level functions
# =============================================================================


def serialize_literal(value: pa.Scalar, context: SerdeContext) -> LiteralProto:
    """Serialize a scalar to a wire literal.

    Null scalars become typed ``null`` literals.

    Raises:
        UnsupportedFeatureError: If the scalar's type has no literal form.
    """
    data_type = value.type
    if pa.types.is_null(data_type) or pa.types.is_unsigned_integer(data_type):
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Scalars of type {data_type} have no Substrait literal form",
            type(value),
        )
    if not value.is_valid:
        return LiteralProto(null=context.serialize_type("null", data_type, True))
    return _serialize_valid_literal(value, context)


def deserialize_literal(literal_proto: LiteralProto, context: SerdeContext) -> pa.Scalar:
    """Deserialize a wire literal to a scalar.

    Raises:
        InvalidPlanError: If the literal is empty or malformed.
        UnsupportedFeatureError: If the literal kind has no native form.
    """
    which_oneof = literal_proto.WhichOneof("literal_type")
    if which_oneof is None:
        raise context.create_serde_error(InvalidPlanError, "Literal has no value set", LiteralProto)
    handler = _LITERAL_DESERIALIZERS.get(which_oneof)
    if handler is None:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Deserialization not implemented for {which_oneof} literals",
            LiteralProto,
        )
    with context.path_context(which_oneof):
        return handler(getattr(literal_proto, which_oneof), context)


# =============================================================================
# Serialization
# =============================================================================


@singledispatch
def _serialize_valid_literal(value: pa.Scalar, context: SerdeContext) -> LiteralProto:
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Scalars of type {value.type} have no Substrait literal form",
        type(value),
    )


def _register_simple_literal(scalar_class: type, kind: str, data_type: pa.DataType) -> None:
    def _serialize(value: pa.Scalar, context: SerdeContext) -> LiteralProto:
        # Large string/binary scalars subclass the plain ones
        if value.type != data_type:
            raise context.create_serde_error(
                UnsupportedFeatureError,
                f"Scalars of type {value.type} have no Substrait literal form",
                type(value),
            )
        return LiteralProto(**{kind: value.as_py()})

    _serialize_valid_literal.register(scalar_class, _serialize)


for _scalar_class, _kind, _data_type in (
    (pa.BooleanScalar, "boolean", pa.bool_()),
    (pa.Int8Scalar, "i8", pa.int8()),
    (pa.Int16Scalar, "i16", pa.int16()),
    (pa.Int32Scalar, "i32", pa.int32()),
    (pa.Int64Scalar, "i64", pa.int64()),
    (pa.FloatScalar, "fp32", pa.float32()),
    (pa.DoubleScalar, "fp64", pa.float64()),
    (pa.StringScalar, "string", pa.utf8()),
    (pa.BinaryScalar, "binary", pa.binary()),
):
    _register_simple_literal(_scalar_class, _kind, _data_type)


@_serialize_valid_literal.register
def _serialize_fixed_size_binary_literal(
    value: pa.FixedSizeBinaryScalar, context: SerdeContext
) -> LiteralProto:
    return LiteralProto(fixed_binary=value.as_py())


@_serialize_valid_literal.register
def _serialize_timestamp_literal(value: pa.TimestampScalar, context: SerdeContext) -> LiteralProto:
    # Validates unit and time zone
    type_proto = context.serialize_type("type", value.type, True)
    if type_proto.HasField("timestamp_tz"):
        return LiteralProto(timestamp_tz=value.value)
    return LiteralProto(timestamp=value.value)


@_serialize_valid_literal.register
def _serialize_date_literal(value: pa.Date32Scalar, context: SerdeContext) -> LiteralProto:
    return LiteralProto(date=value.value)


@_serialize_valid_literal.register
def _serialize_time_literal(value: pa.Time64Scalar, context: SerdeContext) -> LiteralProto:
    context.serialize_type("type", value.type, True)
    return LiteralProto(time=value.value)


@_serialize_valid_literal.register
def _serialize_decimal_literal(value: pa.Decimal128Scalar, context: SerdeContext) -> LiteralProto:
    data_type = value.type
    unscaled = int(value.as_py().scaleb(data_type.scale, context=_DECIMAL_CONTEXT))
    return LiteralProto(
        decimal=LiteralProto.Decimal(
            value=unscaled.to_bytes(_DECIMAL_WIDTH, "little", signed=True),
            precision=data_type.precision,
            scale=data_type.scale,
        )
    )


@_serialize_valid_literal.register
def _serialize_struct_literal(value: pa.StructScalar, context: SerdeContext) -> LiteralProto:
    if value.type.num_fields == 0:
        raise context.create_serde_error(
            UnsupportedFeatureError, "Struct scalars without fields have no Substrait literal form", type(value)
        )
    fields = []
    with context.path_context("fields"):
        for i in range(value.type.num_fields):
            fields.append(context.serialize_literal(f"[{i}]", value[i]))
    return LiteralProto(struct=LiteralProto.Struct(fields=fields))


@_serialize_valid_literal.register
def _serialize_list_literal(value: pa.ListScalar, context: SerdeContext) -> LiteralProto:
    # Validates the list flavor (large and fixed-size lists have no literal form)
    list_type = context.serialize_type("type", value.type, True)
    values = value.values
    if values is None or len(values) == 0:
        return LiteralProto(empty_list=getattr(list_type, "list"))
    items = []
    with context.path_context("values"):
        for i in range(len(values)):
            items.append(context.serialize_literal(f"[{i}]", values[i]))
    return LiteralProto(**{"list": LiteralProto.List(values=items)})


@_serialize_valid_literal.register
def _serialize_extension_literal(value: pa.ExtensionScalar, context: SerdeContext) -> LiteralProto:
    data_type = value.type
    storage = value.value
    if isinstance(data_type, FixedCharType):
        return LiteralProto(fixed_char=storage.as_py().decode("utf-8"))
    if isinstance(data_type, VarCharType):
        return LiteralProto(
            var_char=LiteralProto.VarChar(value=storage.as_py(), length=data_type.length)
        )
    if isinstance(data_type, IntervalYearType):
        years, months = storage.as_py()
        return LiteralProto(
            interval_year_to_month=LiteralProto.IntervalYearToMonth(years=years, months=months)
        )
    if isinstance(data_type, IntervalDayType):
        days, seconds = storage.as_py()
        return LiteralProto(
            interval_day_to_second=LiteralProto.IntervalDayToSecond(days=days, seconds=seconds)
        )
    if isinstance(data_type, UuidType):
        return LiteralProto(uuid=storage.as_py())
    raise context.create_serde_error(
        UnsupportedFeatureError,
        f"Scalars of extension type {data_type} have no Substrait literal form",
        type(value),
    )


# =============================================================================
# Deserialization
# =============================================================================


def _simple(data_type: pa.DataType) -> Callable:
    def _deserialize(value, context: SerdeContext) -> pa.Scalar:
        return pa.scalar(value, type=data_type)

    return _deserialize


def _null_scalar(data_type: pa.DataType) -> pa.Scalar:
    if isinstance(data_type, pa.BaseExtensionType):
        return pa.ExtensionScalar.from_storage(data_type, None)
    return pa.scalar(None, type=data_type)


def _scalar_to_array(value: pa.Scalar) -> pa.Array:
    if isinstance(value.type, pa.BaseExtensionType):
        return pa.ExtensionArray.from_storage(value.type, _scalar_to_array(value.value))
    return pa.repeat(value, 1)


def _deserialize_decimal_literal(decimal_proto, context: SerdeContext) -> pa.Scalar:
    if len(decimal_proto.value) != _DECIMAL_WIDTH:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Decimal literals must be {_DECIMAL_WIDTH} bytes, got {len(decimal_proto.value)}",
            LiteralProto.Decimal,
        )
    data_type = check_decimal(decimal_proto.precision, decimal_proto.scale, LiteralProto.Decimal, context)
    unscaled = int.from_bytes(decimal_proto.value, "little", signed=True)
    if len(str(abs(unscaled))) > data_type.precision:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Decimal literal {unscaled} does not fit precision {data_type.precision}",
            LiteralProto.Decimal,
        )
    value = decimal.Decimal(unscaled).scaleb(-data_type.scale, context=_DECIMAL_CONTEXT)
    return pa.scalar(value, type=data_type)


def _deserialize_fixed_char_literal(value: str, context: SerdeContext) -> pa.Scalar:
    encoded = value.encode("utf-8")
    data_type = FixedCharType(check_length(len(encoded), "fixed_char", LiteralProto, context))
    return pa.ExtensionScalar.from_storage(data_type, pa.scalar(encoded, type=data_type.storage_type))


def _deserialize_var_char_literal(var_char_proto, context: SerdeContext) -> pa.Scalar:
    data_type = VarCharType(check_length(var_char_proto.length, "varchar", LiteralProto.VarChar, context))
    return pa.ExtensionScalar.from_storage(data_type, pa.scalar(var_char_proto.value, type=pa.utf8()))


def _deserialize_fixed_binary_literal(value: bytes, context: SerdeContext) -> pa.Scalar:
    return pa.scalar(value, type=pa.binary(check_length(len(value), "fixed_binary", LiteralProto, context)))


def _deserialize_uuid_literal(value: bytes, context: SerdeContext) -> pa.Scalar:
    if len(value) != 16:
        raise context.create_serde_error(
            InvalidPlanError, f"UUID literals must be 16 bytes, got {len(value)}", LiteralProto
        )
    return pa.ExtensionScalar.from_storage(UuidType(), pa.scalar(value, type=pa.binary(16)))


def _deserialize_interval_year_literal(interval_proto, context: SerdeContext) -> pa.Scalar:
    data_type = IntervalYearType()
    storage = pa.scalar([interval_proto.years, interval_proto.months], type=data_type.storage_type)
    return pa.ExtensionScalar.from_storage(data_type, storage)


def _deserialize_interval_day_literal(interval_proto, context: SerdeContext) -> pa.Scalar:
    for field, field_value in interval_proto.ListFields():
        if field.name not in ("days", "seconds") and field_value:
            raise context.create_serde_error(
                UnsupportedFeatureError,
                f"Sub-second precision ({field.name}) in day-time interval literals is not supported",
                type(interval_proto),
            )
    data_type = IntervalDayType()
    storage = pa.scalar([interval_proto.days, interval_proto.seconds], type=data_type.storage_type)
    return pa.ExtensionScalar.from_storage(data_type, storage)


def _deserialize_struct_literal(struct_proto, context: SerdeContext) -> pa.Scalar:
    if not struct_proto.fields:
        raise context.create_serde_error(
            InvalidPlanError, "Struct literals must have at least one field", LiteralProto.Struct
        )
    children = []
    with context.path_context("fields"):
        for i, field_proto in enumerate(struct_proto.fields):
            children.append(context.deserialize_literal(f"[{i}]", field_proto))
    arrays = [_scalar_to_array(child) for child in children]
    fields = [pa.field("", child.type) for child in children]
    return pa.StructArray.from_arrays(arrays, fields=fields)[0]


def _deserialize_list_literal(list_proto, context: SerdeContext) -> pa.Scalar:
    if not list_proto.values:
        raise context.create_serde_error(
            InvalidPlanError,
            "List literals must have at least one value; use empty_list for empty lists",
            LiteralProto.List,
        )
    values = []
    with context.path_context("values"):
        for i, value_proto in enumerate(list_proto.values):
            values.append(context.deserialize_literal(f"[{i}]", value_proto))
    element_type = values[0].type
    for i, value in enumerate(values):
        if value.type != element_type:
            raise context.create_serde_error(
                InvalidPlanError,
                f"List literal value {i} has type {value.type}, expected {element_type}",
                LiteralProto.List,
            )
    flat = pa.concat_arrays([_scalar_to_array(value) for value in values])
    offsets = pa.array([0, len(flat)], type=pa.int32())
    return pa.ListArray.from_arrays(offsets, flat)[0]


def _deserialize_empty_list_literal(list_type_proto, context: SerdeContext) -> pa.Scalar:
    data_type, _ = context.deserialize_type("type", TypeProto(**{"list": list_type_proto}))
    return pa.scalar([], type=data_type)


def _deserialize_null_literal(type_proto, context: SerdeContext) -> pa.Scalar:
    data_type, nullable = context.deserialize_type("type", type_proto)
    if not nullable:
        raise context.create_serde_error(
            InvalidPlanError, f"Null literal of non-nullable type {data_type}", LiteralProto
        )
    return _null_scalar(data_type)


_LITERAL_DESERIALIZERS: Dict[str, Callable] = {
    "boolean": _simple(pa.bool_()),
    "i8": _simple(pa.int8()),
    "i16": _simple(pa.int16()),
    "i32": _simple(pa.int32()),
    "i64": _simple(pa.int64()),
    "fp32": _simple(pa.float32()),
    "fp64": _simple(pa.float64()),
    "string": _simple(pa.utf8()),
    "binary": _simple(pa.binary()),
    "timestamp": _simple(pa.timestamp("us")),
    "timestamp_tz": _simple(pa.timestamp("us", "UTC")),
    "date": _simple(pa.date32()),
    "time": _simple(pa.time64("us")),
    "interval_year_to_month": _deserialize_interval_year_literal,
    "interval_day_to_second": _deserialize_interval_day_literal,
    "fixed_char": _deserialize_fixed_char_literal,
    "var_char": _deserialize_var_char_literal,
    "fixed_binary": _deserialize_fixed_binary_literal,
    "decimal": _deserialize_decimal_literal,
    "uuid": _deserialize_uuid_literal,
    "struct": _deserialize_struct_literal,
    "list": _deserialize_list_literal,
    "empty_list": _deserialize_empty_list_literal,
    "null": _deserialize_null_literal,
}
