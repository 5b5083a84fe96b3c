"""Conversion configuration classes for substrait-acero."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field

named_table_provider_desc = """
            Callable invoked with the name segments of every named-table read. It must return a
            Declaration producing the table; returning None or raising makes the plan invalid.
            """


class ConversionStrictness(str, Enum):
    """How strictly a plan must be representable on the other side.

    EXACT_ROUNDTRIP rejects any plan whose declared extension functions cannot
    all be resolved up front. BEST_EFFORT tolerates unresolvable functions as
    long as no expression actually calls them.
    """

    EXACT_ROUNDTRIP = "EXACT_ROUNDTRIP"
    BEST_EFFORT = "BEST_EFFORT"


class ConversionOptions(BaseModel):
    """Options that tune how plans are converted.

    Attributes:
        strictness: How to treat extension functions that cannot be resolved.
        named_table_provider: Optional callable resolving named-table reads.
        max_reference_depth: Upper bound on nested field-reference segments; must be > 0.

    Example:
        Resolving named tables against in-memory data:

        ```python
        tables = {"orders": orders_table}

        def provider(names):
            return Declaration.table_source(tables[names[0]])

        options = ConversionOptions(named_table_provider=provider)
        declaration = deserialize_plan(plan_bytes, consumer, options=options)
        ```
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    strictness: ConversionStrictness = Field(
        default=ConversionStrictness.BEST_EFFORT,
        description="How to treat extension functions that cannot be resolved",
    )
    named_table_provider: Optional[Callable[[List[str]], Any]] = Field(
        default=None, description=named_table_provider_desc
    )
    max_reference_depth: int = Field(
        default=64, gt=0, description="Maximum number of nested field-reference segments; must be > 0"
    )
