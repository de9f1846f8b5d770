# report_compiler/schema_registry/models.py
"""Read-only model/field metadata handed to the compiler."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FieldType(str, Enum):
    """Semantic field types used to decide filter/metric/dimension applicability."""

    IDENTIFIER = "identifier"
    NUMBER = "number"
    CURRENCY = "currency"
    STRING = "string"
    DATE = "date"
    PERCENTAGE = "percentage"
    BOOLEAN = "boolean"

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.NUMBER, FieldType.CURRENCY, FieldType.PERCENTAGE)


@dataclass(frozen=True)
class Field:
    """A column of a data model."""

    id: str
    label: str
    type: FieldType
    column_name: Optional[str] = None
    nullable: bool = True
    primary_key: bool = False
    raw_type: str = ""

    @property
    def backing_column(self) -> str:
        return self.column_name or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "column_name": self.backing_column,
            "type": self.type.value,
            "raw_type": self.raw_type,
            "nullable": self.nullable,
            "primary_key": self.primary_key,
        }


@dataclass(frozen=True)
class Association:
    """Relationship from one model to another."""

    kind: str  # belongs_to | has_many
    target_model: str
    foreign_key: str
    source_key: str
    through: Optional[str] = None
    alias: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "target_model": self.target_model,
            "foreign_key": self.foreign_key,
            "source_key": self.source_key,
            "through": self.through,
            "alias": self.alias,
        }


@dataclass(frozen=True)
class DataModel:
    """A queryable relational entity."""

    id: str
    name: str
    table_name: str
    fields: Tuple[Field, ...] = ()
    associations: Tuple[Association, ...] = ()
    description: str = ""

    def get_field(self, field_id: str) -> Optional[Field]:
        """Look a field up by id, falling back to its backing column name."""
        for entry in self.fields:
            if entry.id == field_id:
                return entry
        for entry in self.fields:
            if entry.column_name == field_id:
                return entry
        return None

    @property
    def primary_keys(self) -> List[str]:
        return [entry.id for entry in self.fields if entry.primary_key]

    def to_dict(self) -> Dict[str, Any]:
        primary_keys = self.primary_keys
        return {
            "id": self.id,
            "name": self.name,
            "table_name": self.table_name,
            "description": self.description,
            "primary_keys": primary_keys,
            "primary_key": primary_keys[0] if primary_keys else None,
            "fields": [entry.to_dict() for entry in self.fields],
            "associations": [association.to_dict() for association in self.associations],
        }
