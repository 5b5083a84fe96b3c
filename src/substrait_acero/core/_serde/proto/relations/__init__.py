"""Relation serialization/deserialization modules.

One module per group of wire relation kinds.
"""

from substrait_acero.core._serde.proto.relations import (  # noqa: F401
    aggregate,
    join,
    read,
    transform,
)
