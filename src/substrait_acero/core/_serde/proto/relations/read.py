"""Read relation serialization/deserialization."""

import dataclasses
import logging
from typing import List, Optional, Tuple

import pyarrow as pa
import pyarrow.dataset as ds
import pyarrow.fs as pafs

from substrait_acero.core._serde.proto.relation_serde import (
    DeclarationInfo,
    _deserialize_relation_helper,
    _serialize_relation_helper,
    deserialize_predicate,
)
from substrait_acero.core._serde.proto.serde_context import SerdeContext
from substrait_acero.core._serde.proto.types import (
    FileOrFilesProto,
    LocalFilesProto,
    NamedTableProto,
    ReadRelProto,
    RelProto,
)
from substrait_acero.core.declarations import (
    Declaration,
    FilterNodeOptions,
    ScanNodeOptions,
    TableSourceNodeOptions,
)
from substrait_acero.core.error import InvalidPlanError, UnsupportedFeatureError
from substrait_acero.core.expressions import Expression

logger = logging.getLogger(__name__)

# wire file_format oneof name -> dataset format
_FILE_FORMATS = {
    "parquet": ds.ParquetFileFormat,
    "arrow": ds.IpcFileFormat,
    "orc": ds.OrcFileFormat,
}


# =============================================================================
# Deserialization
# =============================================================================


@_deserialize_relation_helper.register
def _deserialize_read(read: ReadRelProto, context: SerdeContext) -> DeclarationInfo:
    if not read.HasField("base_schema"):
        raise context.create_serde_error(
            InvalidPlanError, "Read relations require a base_schema", ReadRelProto
        )
    schema = context.deserialize_schema(SerdeContext.BASE_SCHEMA, read.base_schema)
    if read.HasField("projection"):
        raise context.create_serde_error(
            UnsupportedFeatureError, "Read relation projections are not supported", ReadRelProto
        )

    filter_expression: Optional[Expression] = None
    if read.HasField("filter"):
        filter_expression = deserialize_predicate(SerdeContext.FILTER, read.filter, schema, context)

    read_type = read.WhichOneof("read_type")
    if read_type == "named_table":
        with context.path_context(read_type):
            declaration = _resolve_named_table(read.named_table, context)
        if filter_expression is not None:
            declaration = Declaration("filter", FilterNodeOptions(filter_expression), inputs=[declaration])
        return DeclarationInfo(declaration, schema)
    if read_type == "local_files":
        with context.path_context(read_type):
            dataset = _make_dataset(read.local_files, schema, context)
        return DeclarationInfo(Declaration("scan", ScanNodeOptions(dataset, filter_expression)), schema)
    if read_type is None:
        raise context.create_serde_error(
            InvalidPlanError, "Read relation has neither a named table nor local files", ReadRelProto
        )
    raise context.create_serde_error(
        UnsupportedFeatureError, f"Read relations of kind '{read_type}' are not supported", ReadRelProto
    )


def _resolve_named_table(named_table: NamedTableProto, context: SerdeContext) -> Declaration:
    names = list(named_table.names)
    if not names:
        raise context.create_serde_error(InvalidPlanError, "Named table has no names", NamedTableProto)
    provider = context.options.named_table_provider
    if provider is None:
        raise context.create_serde_error(
            InvalidPlanError,
            f"Plan reads named table {names} but no named table provider was configured",
            NamedTableProto,
        )
    try:
        source = provider(names)
    except Exception as e:
        raise context.create_serde_error(
            InvalidPlanError, f"Named table provider failed for {names}: {e}", NamedTableProto
        ) from e
    if source is None:
        raise context.create_serde_error(
            InvalidPlanError, f"Named table provider returned nothing for {names}", NamedTableProto
        )
    if isinstance(source, pa.Table):
        source = Declaration.table_source(source)
    if not isinstance(source, Declaration):
        raise context.create_serde_error(
            InvalidPlanError,
            f"Named table provider returned {type(source).__name__} for {names}, expected a Declaration",
            NamedTableProto,
        )
    if not source.label:
        source = dataclasses.replace(source, label=".".join(names))
    logger.debug(f"Resolved named table {names} to {source.factory_name}")
    return source


def _make_dataset(local_files: LocalFilesProto, schema: pa.Schema, context: SerdeContext) -> ds.FileSystemDataset:
    """Build a dataset over the listed files without touching the filesystem."""
    filesystem: Optional[pafs.FileSystem] = None
    file_format: Optional[str] = None
    paths: List[str] = []
    with context.path_context("items"):
        for i, item in enumerate(local_files.items):
            with context.path_context(f"[{i}]"):
                item_format = _item_format(item, context)
                if file_format is not None and item_format != file_format:
                    raise context.create_serde_error(
                        UnsupportedFeatureError,
                        f"Local files mix the {file_format} and {item_format} formats",
                        FileOrFilesProto,
                    )
                file_format = item_format
                item_filesystem, path = _item_path(item, context)
                if filesystem is None:
                    filesystem = item_filesystem
                elif item_filesystem.type_name != filesystem.type_name:
                    raise context.create_serde_error(
                        UnsupportedFeatureError,
                        "Local files must all live on the same filesystem",
                        FileOrFilesProto,
                    )
                paths.append(path)
    format_class = _FILE_FORMATS[file_format or "parquet"]
    return ds.FileSystemDataset.from_paths(
        paths,
        schema=schema,
        format=format_class(),
        filesystem=filesystem or pafs.LocalFileSystem(),
    )


def _item_format(item: FileOrFilesProto, context: SerdeContext) -> str:
    file_format = item.WhichOneof("file_format")
    if file_format is None:
        raise context.create_serde_error(InvalidPlanError, "File item has no format set", FileOrFilesProto)
    if file_format not in _FILE_FORMATS:
        raise context.create_serde_error(
            UnsupportedFeatureError, f"File format '{file_format}' is not supported", FileOrFilesProto
        )
    return file_format


def _item_path(item: FileOrFilesProto, context: SerdeContext) -> Tuple[pafs.FileSystem, str]:
    path_type = item.WhichOneof("path_type")
    if path_type in ("uri_path_glob", "uri_folder"):
        raise context.create_serde_error(
            UnsupportedFeatureError, f"File items given by {path_type} are not supported", FileOrFilesProto
        )
    if path_type is None:
        raise context.create_serde_error(InvalidPlanError, "File item has no path set", FileOrFilesProto)
    if item.start != 0:
        raise context.create_serde_error(
            UnsupportedFeatureError, "Reading files from a non-zero start offset is not supported", FileOrFilesProto
        )
    uri = getattr(item, path_type)
    with context.path_context(path_type):
        try:
            return pafs.FileSystem.from_uri(uri)
        except Exception as e:
            context._handle_serde_error(e)


# =============================================================================
# Serialization
# =============================================================================


@_serialize_relation_helper.register
def _serialize_scan(options: ScanNodeOptions, declaration: Declaration, context: SerdeContext) -> RelProto:
    dataset = options.dataset
    if not isinstance(dataset, ds.FileSystemDataset):
        raise context.create_serde_error(
            UnsupportedFeatureError,
            f"Only file system datasets can be serialized, got {type(dataset).__name__}",
            ScanNodeOptions,
        )
    format_name = _format_name(dataset.format, context)
    items = []
    with context.path_context("local_files"):
        for path in dataset.files:
            item = FileOrFilesProto(uri_file=_file_uri(dataset.filesystem, path))
            getattr(item, format_name).SetInParent()
            items.append(item)
    read = ReadRelProto(
        base_schema=context.serialize_schema(SerdeContext.BASE_SCHEMA, dataset.schema),
        local_files=LocalFilesProto(items=items),
    )
    if options.filter is not None:
        with context.schema_context(dataset.schema):
            read.filter.CopyFrom(context.serialize_expression(SerdeContext.FILTER, options.filter.bind(dataset.schema)))
    return RelProto(read=read)


@_serialize_relation_helper.register
def _serialize_table_source(
    options: TableSourceNodeOptions, declaration: Declaration, context: SerdeContext
) -> RelProto:
    # In-memory tables travel by name; the reader supplies them through its provider
    if not declaration.label:
        raise context.create_serde_error(
            UnsupportedFeatureError,
            "Table sources need a label to be serialized as a named table",
            TableSourceNodeOptions,
        )
    return RelProto(
        read=ReadRelProto(
            base_schema=context.serialize_schema(SerdeContext.BASE_SCHEMA, options.table.schema),
            named_table=NamedTableProto(names=declaration.label.split(".")),
        )
    )


def _format_name(file_format: ds.FileFormat, context: SerdeContext) -> str:
    for name, format_class in _FILE_FORMATS.items():
        if isinstance(file_format, format_class):
            return name
    raise context.create_serde_error(
        UnsupportedFeatureError, f"File format {file_format.default_extname} cannot be serialized", ScanNodeOptions
    )


def _file_uri(filesystem: Optional[pafs.FileSystem], path: str) -> str:
    if filesystem is None or isinstance(filesystem, pafs.LocalFileSystem):
        return "file://" + path if path.startswith("/") else path
    return f"{filesystem.type_name}://{path}"
