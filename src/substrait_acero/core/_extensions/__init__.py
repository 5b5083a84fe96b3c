from substrait_acero.core._extensions.extension_set import ExtensionSet
from substrait_acero.core._extensions.ids import (
    ARROW_EXTENSION_TYPES_URI,
    SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI,
    SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI,
    SUBSTRAIT_BOOLEAN_FUNCTIONS_URI,
    SUBSTRAIT_COMPARISON_FUNCTIONS_URI,
    SUBSTRAIT_STRING_FUNCTIONS_URI,
    Id,
    TypeRecord,
)
from substrait_acero.core._extensions.registry import (
    ExtensionIdRegistry,
    default_extension_id_registry,
    make_extension_id_registry,
)

__all__ = [
    "ARROW_EXTENSION_TYPES_URI",
    "SUBSTRAIT_AGGREGATE_GENERIC_FUNCTIONS_URI",
    "SUBSTRAIT_ARITHMETIC_FUNCTIONS_URI",
    "SUBSTRAIT_BOOLEAN_FUNCTIONS_URI",
    "SUBSTRAIT_COMPARISON_FUNCTIONS_URI",
    "SUBSTRAIT_STRING_FUNCTIONS_URI",
    "ExtensionIdRegistry",
    "ExtensionSet",
    "Id",
    "TypeRecord",
    "default_extension_id_registry",
    "make_extension_id_registry",
]
