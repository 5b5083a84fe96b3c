"""Expression serialization modules.

This package contains expression serialization organized by wire expression
kind.
"""

from substrait_acero.core._serde.proto.expressions import (  # noqa: F401
    conditional,
    function,
    reference,
)

__all__ = [
    "conditional",
    "function",
    "reference",
]
