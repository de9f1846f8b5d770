# report_compiler/schema_registry/registry.py
"""
Schema registry built by introspecting SQLAlchemy table metadata.

The compiler only ever reads from the registry; models and fields are never
mutated once loaded.
"""

import logging
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import MetaData, Table

from .models import Association, DataModel, Field
from .types import resolve_field_type

logger = logging.getLogger(__name__)


def _label(name: str) -> str:
    return name.replace("_", " ").title()


class SchemaRegistry:
    """Lookup of data models by id."""

    def __init__(self, models: Iterable[DataModel]):
        self._models: Dict[str, DataModel] = {}
        for model in models:
            self._models[model.id] = model

    @classmethod
    def from_metadata(cls, metadata: MetaData, descriptions: Optional[Dict[str, str]] = None) -> "SchemaRegistry":
        """Introspect every table of a MetaData object into a DataModel."""
        descriptions = descriptions or {}
        tables = list(metadata.sorted_tables)
        associations: Dict[str, List[Association]] = {table.name: [] for table in tables}

        for table in tables:
            for column in table.columns:
                for foreign_key in column.foreign_keys:
                    target = foreign_key.column.table.name
                    associations[table.name].append(
                        Association(
                            kind="belongs_to",
                            target_model=target,
                            foreign_key=column.name,
                            source_key=foreign_key.column.name,
                        )
                    )
                    if target in associations:
                        associations[target].append(
                            Association(
                                kind="has_many",
                                target_model=table.name,
                                foreign_key=column.name,
                                source_key=foreign_key.column.name,
                            )
                        )

        models = [
            cls._model_from_table(table, associations[table.name], descriptions.get(table.name, ""))
            for table in tables
        ]
        logger.debug("Introspected %d models", len(models))
        return cls(models)

    @staticmethod
    def _model_from_table(table: Table, associations: List[Association], description: str) -> DataModel:
        fields = []
        for column in table.columns:
            raw_type = str(column.type)
            fields.append(
                Field(
                    id=column.key,
                    label=_label(column.key),
                    type=resolve_field_type(raw_type, column.name, bool(column.primary_key)),
                    column_name=column.name,
                    nullable=bool(column.nullable),
                    primary_key=bool(column.primary_key),
                    raw_type=raw_type,
                )
            )
        return DataModel(
            id=table.name,
            name=_label(table.name),
            table_name=table.name,
            fields=tuple(fields),
            associations=tuple(associations),
            description=description or table.comment or f"{_label(table.name)} data model",
        )

    def models(self) -> List[DataModel]:
        return list(self._models.values())

    def has_model(self, model_id: str) -> bool:
        return model_id in self._models

    def get_model(self, model_id: str) -> Optional[DataModel]:
        return self._models.get(model_id)

    def get_field(self, model_id: str, field_id: str) -> Optional[Field]:
        model = self._models.get(model_id)
        if model is None:
            return None
        return model.get_field(field_id)

    def to_payload(self) -> Dict[str, Any]:
        """The ``{models: [...]}`` shape served to the report builder."""
        return {"models": [model.to_dict() for model in self._models.values()]}


@lru_cache(maxsize=1)
def get_schema_registry() -> SchemaRegistry:
    """Registry over the warehouse models."""
    from report_compiler.core.database import DWBase
    from report_compiler.warehouse import models as warehouse_models

    descriptions = {
        cls.__tablename__: (cls.__doc__ or "").strip()
        for cls in (
            warehouse_models.Product,
            warehouse_models.Order,
            warehouse_models.OrderItem,
            warehouse_models.Refund,
        )
    }
    return SchemaRegistry.from_metadata(DWBase.metadata, descriptions)
