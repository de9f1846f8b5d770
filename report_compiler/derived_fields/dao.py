# report_compiler/derived_fields/dao.py
"""Data access for derived-field definitions."""

from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from report_compiler.core.base_dao import BaseDAO

from .models import DerivedFieldDefinition
from .schemas import DerivedFieldScope


class DerivedFieldDAO(BaseDAO[DerivedFieldDefinition]):
    def __init__(self, db: Session):
        super().__init__(DerivedFieldDefinition, db)

    def list_for_template(self, template_id: Optional[str]) -> List[DerivedFieldDefinition]:
        """Workspace fields plus the fields owned by ``template_id``, oldest first."""
        query = select(DerivedFieldDefinition)
        if template_id:
            query = query.where(
                or_(
                    DerivedFieldDefinition.scope == DerivedFieldScope.WORKSPACE,
                    DerivedFieldDefinition.template_id == template_id,
                )
            )
        query = query.order_by(DerivedFieldDefinition.created_at, DerivedFieldDefinition.name)
        return list(self.db.execute(query).scalars().all())

    def get_many(self, ids: List[str]) -> List[DerivedFieldDefinition]:
        if not ids:
            return []
        query = select(DerivedFieldDefinition).where(DerivedFieldDefinition.id.in_(ids))
        return list(self.db.execute(query).scalars().all())
