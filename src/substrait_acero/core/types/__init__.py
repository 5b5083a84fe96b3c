"""Native Arrow types for Substrait types without a plain Arrow equivalent."""

from substrait_acero.core.types.extension_types import (
    FixedCharType,
    IntervalDayType,
    IntervalYearType,
    UuidType,
    VarCharType,
    fixed_char,
    interval_day,
    interval_year,
    uuid,
    varchar,
)

__all__ = [
    "FixedCharType",
    "IntervalDayType",
    "IntervalYearType",
    "UuidType",
    "VarCharType",
    "fixed_char",
    "interval_day",
    "interval_year",
    "uuid",
    "varchar",
]
