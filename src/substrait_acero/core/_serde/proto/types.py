"""Protobuf type imports with Proto suffix for use in serialization.

This module imports the Substrait protobuf classes with a 'Proto' suffix
to avoid naming conflicts with the native classes they are converted to.
Nested message classes are re-exported under flat names.
"""

from __future__ import annotations

from substrait.gen.proto.algebra_pb2 import (
    AggregateFunction as AggregateFunctionProto,
)
from substrait.gen.proto.algebra_pb2 import (
    AggregateRel as AggregateRelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    AggregationPhase as AggregationPhaseProto,
)
from substrait.gen.proto.algebra_pb2 import (
    Expression as ExpressionProto,
)
from substrait.gen.proto.algebra_pb2 import (
    FilterRel as FilterRelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    FunctionArgument as FunctionArgumentProto,
)
from substrait.gen.proto.algebra_pb2 import (
    JoinRel as JoinRelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    ProjectRel as ProjectRelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    ReadRel as ReadRelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    Rel as RelProto,
)
from substrait.gen.proto.algebra_pb2 import (
    RelCommon as RelCommonProto,
)
from substrait.gen.proto.algebra_pb2 import (
    RelRoot as RelRootProto,
)
from substrait.gen.proto.extensions.extensions_pb2 import (
    SimpleExtensionDeclaration as SimpleExtensionDeclarationProto,
)
from substrait.gen.proto.extensions.extensions_pb2 import (
    SimpleExtensionURI as SimpleExtensionURIProto,
)
from substrait.gen.proto.plan_pb2 import (
    Plan as PlanProto,
)
from substrait.gen.proto.plan_pb2 import (
    PlanRel as PlanRelProto,
)
from substrait.gen.proto.type_pb2 import (
    NamedStruct as NamedStructProto,
)
from substrait.gen.proto.type_pb2 import (
    Type as TypeProto,
)

# Type variants
BooleanTypeProto = TypeProto.Boolean
I8TypeProto = TypeProto.I8
I16TypeProto = TypeProto.I16
I32TypeProto = TypeProto.I32
I64TypeProto = TypeProto.I64
FP32TypeProto = TypeProto.FP32
FP64TypeProto = TypeProto.FP64
StringTypeProto = TypeProto.String
BinaryTypeProto = TypeProto.Binary
TimestampTypeProto = TypeProto.Timestamp
TimestampTZTypeProto = TypeProto.TimestampTZ
DateTypeProto = TypeProto.Date
TimeTypeProto = TypeProto.Time
IntervalYearTypeProto = TypeProto.IntervalYear
IntervalDayTypeProto = TypeProto.IntervalDay
UUIDTypeProto = TypeProto.UUID
FixedCharTypeProto = TypeProto.FixedChar
VarCharTypeProto = TypeProto.VarChar
FixedBinaryTypeProto = TypeProto.FixedBinary
DecimalTypeProto = TypeProto.Decimal
StructTypeProto = TypeProto.Struct
ListTypeProto = TypeProto.List
MapTypeProto = TypeProto.Map
UserDefinedTypeProto = TypeProto.UserDefined
NullabilityProto = TypeProto.Nullability

# Expression variants
LiteralProto = ExpressionProto.Literal
FieldReferenceProto = ExpressionProto.FieldReference
ReferenceSegmentProto = ExpressionProto.ReferenceSegment
ScalarFunctionProto = ExpressionProto.ScalarFunction
IfThenProto = ExpressionProto.IfThen
IfClauseProto = ExpressionProto.IfThen.IfClause
CastProto = ExpressionProto.Cast

# Relation details
EmitProto = RelCommonProto.Emit
NamedTableProto = ReadRelProto.NamedTable
LocalFilesProto = ReadRelProto.LocalFiles
FileOrFilesProto = ReadRelProto.LocalFiles.FileOrFiles
JoinTypeProto = JoinRelProto.JoinType
GroupingProto = AggregateRelProto.Grouping
MeasureProto = AggregateRelProto.Measure

# Extension declarations
ExtensionTypeProto = SimpleExtensionDeclarationProto.ExtensionType
ExtensionFunctionProto = SimpleExtensionDeclarationProto.ExtensionFunction
