from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import RecordShapeError

logger = logging.getLogger(__name__)

SQL_METADATA_KEY = "sql"
TABLE_TAG = "table"


@dataclass(frozen=True)
class TableDef:
    """Table definition created once when a SqlStorage is opened.

    `columns` maps column name to its type declaration, in declaration order."""

    name: str
    columns: Dict[str, str]
    primary_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SqlRow:
    table: str
    columns: Dict[str, Any]


class SqlRecord(ABC):
    """A record that knows which table row it becomes."""

    @abstractmethod
    def sql_row(self) -> SqlRow:
        raise NotImplementedError


def sql_column(name: str, **kwargs: Any) -> Any:
    """Declare a dataclass field stored in column `name` (or TABLE_TAG for the table name)."""
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[SQL_METADATA_KEY] = name
    return field(metadata=metadata, **kwargs)


class TaggedRecord(SqlRecord):
    """Dataclass mixin deriving sql_row() from sql_column() field tags.

    Exactly one field must be tagged TABLE_TAG and hold a str; every other
    tagged field becomes a column; untagged fields are skipped with a warning.
    """

    def sql_row(self) -> SqlRow:
        if not dataclasses.is_dataclass(self):
            raise RecordShapeError(f"{type(self).__name__} must be a dataclass to use TaggedRecord")

        table = None
        columns: Dict[str, Any] = {}
        for f in dataclasses.fields(self):
            column = f.metadata.get(SQL_METADATA_KEY)
            value = getattr(self, f.name)
            if column == TABLE_TAG:
                if not isinstance(value, str):
                    raise RecordShapeError(
                        f"The field with '{TABLE_TAG}' tag should be str, got: {type(value).__name__}"
                    )
                table = value
            elif not column:
                logger.warning(f"Field '{type(self).__name__}.{f.name}' doesn't have tag '{SQL_METADATA_KEY}'.")
            else:
                columns[column] = value

        if not table:
            raise RecordShapeError(f"{type(self).__name__} has no '{TABLE_TAG}' field")
        if not columns:
            raise RecordShapeError(f"{type(self).__name__} has no column fields")
        return SqlRow(table=table, columns=columns)
