from __future__ import annotations

import logging

import pyarrow as pa
import pyarrow.dataset as ds

from substrait_acero.core.declarations import (
    ConsumingSinkNodeOptions,
    Declaration,
    WriteNodeOptions,
)
from substrait_acero.core.error import InvalidPlanError

logger = logging.getLogger(__name__)


def run_declaration(declaration: Declaration) -> None:
    """Execute a ``consuming_sink`` or ``write`` declaration to completion."""
    options = declaration.options
    if not isinstance(options, (ConsumingSinkNodeOptions, WriteNodeOptions)):
        raise InvalidPlanError(
            f"Only consuming_sink and write declarations can be run, got {declaration.factory_name}"
        )
    reader = declaration.input.to_reader()
    if isinstance(options, ConsumingSinkNodeOptions):
        _drive_consumer(reader, options)
    else:
        _write(reader, options)


def _drive_consumer(reader: pa.RecordBatchReader, options: ConsumingSinkNodeOptions) -> None:
    consumer = options.consumer
    consumer.init(reader.schema)
    num_rows = 0
    for batch in reader:
        num_rows += batch.num_rows
        consumer.consume(batch)
    consumer.finish()
    logger.debug(f"Sink consumed {num_rows} rows")


def _write(reader: pa.RecordBatchReader, options: WriteNodeOptions) -> None:
    ds.write_dataset(
        reader,
        options.base_dir,
        format=options.format,
        filesystem=options.filesystem,
        basename_template=options.basename_template,
        partitioning=options.partitioning,
        existing_data_behavior=options.existing_data_behavior,
        **options.extra,
    )
    logger.debug(f"Wrote dataset to {options.base_dir}")
