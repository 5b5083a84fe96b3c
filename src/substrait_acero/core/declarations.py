"""Declarations: the native plan tree produced by relation lowering.

A ``Declaration`` names an Acero node factory, carries that node's options
and lists its inputs. Unlike ``pyarrow.acero.Declaration`` it can be
inspected, compared and re-serialized; ``to_acero()`` produces the
executable form.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import pyarrow as pa
import pyarrow.dataset as ds

from substrait_acero.core.expressions import Expression, FieldRef


class JoinType(str, Enum):
    """Hash join types, valued with the names Acero uses."""

    INNER = "inner"
    LEFT_OUTER = "left outer"
    RIGHT_OUTER = "right outer"
    FULL_OUTER = "full outer"


class JoinKeyCmp(str, Enum):
    """How a pair of join keys is compared.

    EQ never matches nulls; IS treats two nulls as equal.
    """

    EQ = "EQ"
    IS = "IS"


class SinkNodeConsumer(ABC):
    """Receives the batches produced by a consuming sink."""

    def init(self, schema: pa.Schema) -> None:
        """Called once with the output schema before any batch."""
        pass

    @abstractmethod
    def consume(self, batch: pa.RecordBatch) -> None:
        pass

    def finish(self) -> None:
        """Called once after the last batch."""
        pass


class CollectingConsumer(SinkNodeConsumer):
    """Consumer that keeps every batch, exposing them as a table."""

    def __init__(self):
        self.schema: Optional[pa.Schema] = None
        self.batches: List[pa.RecordBatch] = []
        self.finished = False

    def init(self, schema: pa.Schema) -> None:
        self.schema = schema

    def consume(self, batch: pa.RecordBatch) -> None:
        self.batches.append(batch)

    def finish(self) -> None:
        self.finished = True

    def to_table(self) -> pa.Table:
        return pa.Table.from_batches(self.batches, schema=self.schema)


@dataclass
class TableSourceNodeOptions:
    table: pa.Table


@dataclass
class ScanNodeOptions:
    """Scan of a dataset; ``filter`` is applied to the scanned rows."""

    dataset: ds.Dataset
    filter: Optional[Expression] = None


@dataclass
class FilterNodeOptions:
    filter_expression: Expression


@dataclass
class ProjectNodeOptions:
    expressions: List[Expression]
    names: List[str] = field(default_factory=list)


@dataclass
class HashJoinNodeOptions:
    join_type: JoinType
    left_keys: List[FieldRef]
    right_keys: List[FieldRef]
    key_cmp: List[JoinKeyCmp] = field(default_factory=list)


@dataclass
class Aggregate:
    """One aggregate measure: a ``pyarrow.compute`` aggregate over ``targets``."""

    function: str
    targets: List[FieldRef]
    name: str


@dataclass
class AggregateNodeOptions:
    """Aggregation; with keys the functions must be the ``hash_`` variants."""

    aggregates: List[Aggregate]
    keys: List[FieldRef] = field(default_factory=list)


@dataclass
class ConsumingSinkNodeOptions:
    consumer: SinkNodeConsumer


@dataclass
class WriteNodeOptions:
    """Arguments for ``pyarrow.dataset.write_dataset``."""

    base_dir: str
    format: Union[str, ds.FileFormat] = "parquet"
    filesystem: Any = None
    basename_template: Optional[str] = None
    partitioning: Any = None
    existing_data_behavior: str = "error"
    extra: Dict[str, Any] = field(default_factory=dict)


NodeOptions = Union[
    TableSourceNodeOptions,
    ScanNodeOptions,
    FilterNodeOptions,
    ProjectNodeOptions,
    HashJoinNodeOptions,
    AggregateNodeOptions,
    ConsumingSinkNodeOptions,
    WriteNodeOptions,
]


@dataclass
class Declaration:
    """An unexecuted plan node: factory name, options and inputs."""

    factory_name: str
    options: NodeOptions
    inputs: List[Declaration] = field(default_factory=list)
    label: str = ""

    @classmethod
    def sequence(cls, declarations: Sequence[Declaration]) -> Declaration:
        """Chain declarations so each one consumes the previous; returns the last.

        Every declaration after the first must have no inputs of its own.
        """
        if not declarations:
            raise ValueError("Declaration.sequence requires at least one declaration")
        current = declarations[0]
        for declaration in declarations[1:]:
            if declaration.inputs:
                raise ValueError(f"{declaration.factory_name} already has inputs and cannot be sequenced")
            declaration.inputs = [current]
            current = declaration
        return current

    @classmethod
    def table_source(cls, table: pa.Table) -> Declaration:
        return cls("table_source", TableSourceNodeOptions(table))

    @property
    def input(self) -> Declaration:
        """The single input of a unary node."""
        if len(self.inputs) != 1:
            raise ValueError(f"{self.factory_name} has {len(self.inputs)} inputs, expected 1")
        return self.inputs[0]

    def output_schema(self) -> pa.Schema:
        """Schema of the batches this node produces."""
        from substrait_acero._backends.acero.transpiler import output_schema

        return output_schema(self)

    def to_acero(self):
        """Convert to an executable ``pyarrow.acero.Declaration``.

        Sinks and writes are not Acero nodes in pyarrow; for them the input is
        converted. Use ``run_declaration`` to drive a sink or write.
        """
        from substrait_acero._backends.acero.transpiler import convert_declaration

        return convert_declaration(self)

    def to_table(self) -> pa.Table:
        return self.to_acero().to_table(use_threads=True)

    def to_reader(self) -> pa.RecordBatchReader:
        return self.to_acero().to_reader(use_threads=True)

    def __str__(self) -> str:
        return self._repr_tree(0)

    def _repr_tree(self, depth: int) -> str:
        label = f" [{self.label}]" if self.label else ""
        lines = ["  " * depth + f"{self.factory_name}{label}"]
        for child in self.inputs:
            lines.append(child._repr_tree(depth + 1))
        return "\n".join(lines)
