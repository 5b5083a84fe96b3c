"""Arrow extension types for Substrait types without a plain Arrow equivalent.

Each type is a ``pyarrow.ExtensionType`` over a standard storage type, so
tables carrying them can still be scanned, projected and joined by Acero.
Parameters are serialized as JSON so the types survive IPC round trips.
"""

from __future__ import annotations

import json

import pyarrow as pa

EXTENSION_NAME_PREFIX = "substrait_acero"


class _ParametrizedLengthType(pa.ExtensionType):
    """Shared implementation for types parametrized by a single length."""

    _extension_suffix: str = ""

    def __init__(self, length: int, storage_type: pa.DataType):
        self._length = length
        super().__init__(storage_type, f"{EXTENSION_NAME_PREFIX}.{self._extension_suffix}")

    @property
    def length(self) -> int:
        return self._length

    def __arrow_ext_serialize__(self) -> bytes:
        return json.dumps({"length": self._length}).encode()

    def __reduce__(self):
        return type(self), (self._length,)

    def __str__(self) -> str:
        return f"{self._extension_suffix}<{self._length}>"


class FixedCharType(_ParametrizedLengthType):
    """Fixed-length character string, stored as fixed-size binary."""

    _extension_suffix = "fixed_char"

    def __init__(self, length: int):
        super().__init__(length, pa.binary(length))

    @classmethod
    def __arrow_ext_deserialize__(cls, storage_type, serialized):
        return cls(json.loads(serialized.decode())["length"])


class VarCharType(_ParametrizedLengthType):
    """Variable-length character string with a maximum length, stored as utf8."""

    _extension_suffix = "varchar"

    def __init__(self, length: int):
        super().__init__(length, pa.utf8())

    @classmethod
    def __arrow_ext_deserialize__(cls, storage_type, serialized):
        return cls(json.loads(serialized.decode())["length"])


class _IntervalType(pa.ExtensionType):
    _extension_suffix: str = ""

    def __init__(self):
        super().__init__(
            pa.list_(pa.int32(), 2), f"{EXTENSION_NAME_PREFIX}.{self._extension_suffix}"
        )

    def __arrow_ext_serialize__(self) -> bytes:
        return b""

    @classmethod
    def __arrow_ext_deserialize__(cls, storage_type, serialized):
        return cls()

    def __reduce__(self):
        return type(self), ()

    def __str__(self) -> str:
        return self._extension_suffix


class IntervalYearType(_IntervalType):
    """Year-month interval stored as ``[years, months]``."""

    _extension_suffix = "interval_year"


class IntervalDayType(_IntervalType):
    """Day-time interval stored as ``[days, seconds]``."""

    _extension_suffix = "interval_day"


class UuidType(pa.ExtensionType):
    """128-bit UUID stored as 16-byte fixed-size binary."""

    def __init__(self):
        super().__init__(pa.binary(16), f"{EXTENSION_NAME_PREFIX}.uuid")

    def __arrow_ext_serialize__(self) -> bytes:
        return b""

    @classmethod
    def __arrow_ext_deserialize__(cls, storage_type, serialized):
        return cls()

    def __reduce__(self):
        return type(self), ()

    def __str__(self) -> str:
        return "uuid"


def fixed_char(length: int) -> FixedCharType:
    return FixedCharType(length)


def varchar(length: int) -> VarCharType:
    return VarCharType(length)


def interval_year() -> IntervalYearType:
    return IntervalYearType()


def interval_day() -> IntervalDayType:
    return IntervalDayType()


def uuid() -> UuidType:
    return UuidType()


def _register_extension_types() -> None:
    for prototype in (FixedCharType(1), VarCharType(1), IntervalYearType(), IntervalDayType(), UuidType()):
        try:
            pa.register_extension_type(prototype)
        except pa.ArrowKeyError:
            # Already registered by an earlier import of this module
            continue


_register_extension_types()
