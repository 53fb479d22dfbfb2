"""
Structured CREATE TABLE statements.

Builders assemble a ``CreateTableStatement`` from columns, a partitioning
clause and storage options. Text is only produced by ``render()``,
so every clause can be inspected in tests without parsing SQL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from partmigrate.models import ColumnInfo

LENGTH_TYPES = frozenset({"VARCHAR2", "CHAR", "NVARCHAR2", "NCHAR", "RAW"})
HASH_PARTITION_COUNT = 16


def compression_clause(compression: str | None) -> str:
    """
    Render a compression keyword as an Oracle clause.

    Example:
        >>> compression_clause("query high")
        'COMPRESS FOR QUERY HIGH'
        >>> compression_clause("NONE")
        ''
    """
    if compression is None:
        return ""
    value = " ".join(compression.upper().split())
    if value in ("", "NONE"):
        return ""
    if value == "BASIC":
        return "COMPRESS BASIC"
    if value == "OLTP":
        return "COMPRESS FOR OLTP"
    if value.startswith(("QUERY", "ARCHIVE")):
        return f"COMPRESS FOR {value}"
    return ""


def date_literal(value: datetime) -> str:
    """Render a datetime as an Oracle TO_DATE literal."""
    if value.hour or value.minute or value.second:
        return f"TO_DATE('{value:%Y-%m-%d %H:%M:%S}','YYYY-MM-DD HH24:MI:SS')"
    return f"TO_DATE('{value:%Y-%m-%d}','YYYY-MM-DD')"


@dataclass(frozen=True)
class ColumnDefinition:
    """A column of the table being created."""

    name: str
    data_type: str
    nullable: bool = True

    @classmethod
    def from_column_info(cls, column: ColumnInfo) -> ColumnDefinition:
        data_type = column.data_type
        if data_type in LENGTH_TYPES and column.data_length:
            data_type = f"{data_type}({column.data_length})"
        elif data_type == "NUMBER" and column.data_precision is not None:
            if column.data_scale:
                data_type = f"NUMBER({column.data_precision},{column.data_scale})"
            else:
                data_type = f"NUMBER({column.data_precision})"
        return cls(name=column.name, data_type=data_type, nullable=column.nullable)

    def render(self) -> str:
        return f"{self.name} {self.data_type}{'' if self.nullable else ' NOT NULL'}"


@dataclass(frozen=True)
class StorageOptions:
    """Segment attributes of a table or of a single partition."""

    tablespace: str | None = None
    compression: str | None = None
    pctfree: int | None = None

    def render(self) -> str:
        parts = []
        if self.pctfree is not None:
            parts.append(f"PCTFREE {self.pctfree}")
        if self.tablespace:
            parts.append(f"TABLESPACE {self.tablespace}")
        clause = compression_clause(self.compression)
        if clause:
            parts.append(clause)
        return " ".join(parts)


@dataclass(frozen=True)
class RangePartition:
    """``PARTITION name VALUES LESS THAN (...)``; ``upper=None`` means MAXVALUE."""

    name: str
    upper: datetime | None
    storage: StorageOptions | None = None

    def render(self) -> str:
        bound = "MAXVALUE" if self.upper is None else date_literal(self.upper)
        text = f"PARTITION {self.name} VALUES LESS THAN ({bound})"
        storage = self.storage.render() if self.storage else ""
        return f"{text} {storage}" if storage else text


@dataclass(frozen=True)
class ListPartition:
    """``PARTITION name VALUES (...)`` with literal values rendered verbatim."""

    name: str
    values: tuple[str, ...]

    def render(self) -> str:
        return f"PARTITION {self.name} VALUES ({', '.join(self.values)})"


@dataclass(frozen=True)
class PartitionSpec:
    """
    The ``PARTITION BY`` clause.

    Attributes:
        method: RANGE, LIST or HASH.
        key: Partition key column.
        interval: Interval expression for RANGE ... INTERVAL.
        automatic: AUTOMATIC list partitioning.
        partitions: Explicit partitions in boundary order.
        hash_partitions: Partition count for HASH.
    """

    method: str
    key: str
    interval: str | None = None
    automatic: bool = False
    partitions: tuple[RangePartition | ListPartition, ...] = ()
    hash_partitions: int = HASH_PARTITION_COUNT

    def render(self) -> str:
        lines = [f"PARTITION BY {self.method} ({self.key})"]
        if self.method == "HASH":
            lines[0] += f" PARTITIONS {self.hash_partitions}"
            return "\n".join(lines)
        if self.automatic:
            lines[0] += " AUTOMATIC"
        if self.interval:
            lines.append(f"INTERVAL ({self.interval})")
        if self.partitions:
            body = ",\n".join(f"  {partition.render()}" for partition in self.partitions)
            lines.append(f"(\n{body}\n)")
        return "\n".join(lines)


@dataclass(frozen=True)
class CreateTableStatement:
    """
    A complete ``CREATE TABLE`` for a partitioned table.

    Example:
        >>> statement.render().splitlines()[0]
        'CREATE TABLE DWH.SALES_PART'
    """

    owner: str
    table: str
    columns: tuple[ColumnDefinition, ...]
    partitioning: PartitionSpec
    storage: StorageOptions = field(default_factory=StorageOptions)
    parallel_degree: int | None = None
    row_movement: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.owner}.{self.table}"

    def render(self) -> str:
        lines = [f"CREATE TABLE {self.qualified_name}", "("]
        lines.append(",\n".join(f"  {column.render()}" for column in self.columns))
        lines.append(")")
        segment = self.storage.render()
        if segment:
            lines.append(segment)
        lines.append(self.partitioning.render())
        if self.parallel_degree and self.parallel_degree > 1:
            lines.append(f"PARALLEL {self.parallel_degree}")
        if self.row_movement:
            lines.append("ENABLE ROW MOVEMENT")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()


__all__ = [
    "HASH_PARTITION_COUNT",
    "compression_clause",
    "date_literal",
    "ColumnDefinition",
    "StorageOptions",
    "RangePartition",
    "ListPartition",
    "PartitionSpec",
    "CreateTableStatement",
]
