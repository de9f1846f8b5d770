# report_compiler/derived_fields/service.py
"""Derived-field definitions: validation against the schema registry, CRUD and re-checks."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from report_compiler.expressions.extraction import normalize_ast
from report_compiler.expressions.nodes import node_from_dict
from report_compiler.expressions.parser import parse
from report_compiler.joins.graph import evaluate_coverage
from report_compiler.joins.inference import infer_join_pairs, join_key_set
from report_compiler.query.hashing import compute_payload_hash
from report_compiler.schema_registry.registry import SchemaRegistry

from .dao import DerivedFieldDAO
from .models import DerivedFieldDefinition
from .reconciliation import effective_referenced_models, reconcile
from .schemas import (
    DerivedField,
    DerivedFieldCreate,
    DerivedFieldKind,
    DerivedFieldRead,
    DerivedFieldScope,
    DerivedFieldUpdate,
    ReconciledField,
    ReconcileFieldInput,
    ReconcileRequest,
)

logger = logging.getLogger(__name__)


class DerivedFieldService:
    """Service layer for derived-field definitions."""

    def __init__(self, dao: DerivedFieldDAO, registry: SchemaRegistry):
        self.dao = dao
        self.registry = registry

    # ===== ANALYSIS =====

    def analyze_expression(self, expression: str, expression_ast: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Parse (or accept a client AST for) an expression and check every
        reference against the schema registry.

        Raises:
            ExpressionSyntaxError: if the expression text does not parse.
            HTTPException: 400 for a malformed AST or unknown references.
        """
        if expression_ast is not None:
            normalized = normalize_ast(expression_ast)
            if normalized is None:
                raise HTTPException(status_code=400, detail="Derived field expression AST is invalid")
            ast = normalized.ast
            referenced_models = sorted(normalized.referenced_models)
            referenced_fields = normalized.referenced_fields
        else:
            parsed = parse(expression)
            ast = parsed.ast
            referenced_models = sorted(parsed.referenced_models)
            referenced_fields = parsed.fields_payload()

        missing_models = [model for model in referenced_models if not self.registry.has_model(model)]
        missing_fields = [
            f"{model}.{field_id}"
            for model, field_ids in referenced_fields.items()
            if model not in missing_models
            for field_id in field_ids
            if self.registry.get_field(model, field_id) is None
        ]
        if missing_models or missing_fields:
            raise HTTPException(
                status_code=400,
                detail={
                    "message": "Derived field references unknown models or fields.",
                    "missing_models": missing_models,
                    "missing_fields": missing_fields,
                },
            )

        ast_payload = ast.to_dict()
        return {
            "expression_ast": ast_payload,
            "referenced_models": referenced_models,
            "referenced_fields": referenced_fields,
            "join_dependencies": [list(pair) for pair in infer_join_pairs(referenced_models)],
            "compiled_sql_hash": compute_payload_hash(ast_payload),
        }

    # ===== CRUD =====

    def list_fields(self, template_id: Optional[str] = None) -> List[DerivedFieldRead]:
        return [self._to_read(definition) for definition in self.dao.list_for_template(template_id)]

    def get_field(self, field_id: str) -> DerivedFieldRead:
        return self._to_read(self._get_or_404(field_id))

    def create(self, data: DerivedFieldCreate, created_by: str = "system") -> DerivedFieldRead:
        if data.scope == DerivedFieldScope.TEMPLATE and not data.template_id:
            raise HTTPException(status_code=400, detail="Template-scoped derived fields require a template_id")

        analysis = self.analyze_expression(data.expression, data.expression_ast)
        definition = self.dao.create(
            template_id=data.template_id,
            scope=data.scope,
            name=data.name,
            expression=data.expression,
            kind=data.kind,
            model_graph_signature=data.model_graph_signature,
            field_metadata=data.metadata,
            created_by=created_by,
            **analysis,
        )
        logger.info("Created derived field %s (%s)", definition.id, definition.name)
        return self._to_read(definition)

    def update(self, field_id: str, data: DerivedFieldUpdate, updated_by: str = "system") -> DerivedFieldRead:
        definition = self._get_or_404(field_id)
        changes = data.model_dump(exclude_unset=True)

        metadata = changes.pop("metadata", None)
        if "metadata" in data.model_fields_set:
            changes["field_metadata"] = metadata

        if "expression" in changes or "expression_ast" in changes:
            expression = changes.get("expression") or definition.expression
            changes["expression"] = expression
            changes.update(self.analyze_expression(expression, changes.pop("expression_ast", None)))

        definition = self.dao.update(definition, updated_by=updated_by, **changes)
        logger.info("Updated derived field %s", definition.id)
        return self._to_read(definition)

    def delete(self, field_id: str) -> None:
        if not self.dao.delete(field_id):
            raise HTTPException(status_code=404, detail="Derived field not found")
        logger.info("Deleted derived field %s", field_id)

    # ===== DOMAIN =====

    def load(self, field_ids: Optional[List[str]] = None, template_id: Optional[str] = None) -> List[DerivedField]:
        """Saved definitions as domain objects."""
        if field_ids:
            definitions = self.dao.get_many(field_ids)
        else:
            definitions = self.dao.list_for_template(template_id)
        return [to_domain(definition) for definition in definitions]

    def reconcile(self, request: ReconcileRequest) -> List[ReconciledField]:
        """Re-check staleness and join coverage for the given selection."""
        fields = [from_reconcile_input(entry) for entry in request.fields]
        if request.field_ids or request.template_id:
            known = {field.id for field in fields}
            fields.extend(
                field
                for field in self.load(request.field_ids, request.template_id)
                if field.id not in known
            )

        join_keys = join_key_set(request.joins)
        results = []
        for before, after in zip(fields, reconcile(fields, request.models)):
            models = effective_referenced_models(after)
            coverage_source = after if after.referenced_models else replace(after, referenced_models=models)
            results.append(
                ReconciledField(
                    id=after.id,
                    status=after.status,
                    changed=after is not before,
                    referenced_models=sorted(models),
                    coverage=[entry.to_dict() for entry in evaluate_coverage(coverage_source, join_keys)],
                )
            )
        return results

    def _get_or_404(self, field_id: str) -> DerivedFieldDefinition:
        definition = self.dao.get_by_id(field_id)
        if definition is None:
            raise HTTPException(status_code=404, detail="Derived field not found")
        return definition

    @staticmethod
    def _to_read(definition: DerivedFieldDefinition) -> DerivedFieldRead:
        return DerivedFieldRead(
            id=definition.id,
            template_id=definition.template_id,
            name=definition.name,
            expression=definition.expression,
            kind=definition.kind,
            scope=definition.scope,
            expression_ast=definition.expression_ast,
            referenced_models=list(definition.referenced_models or []),
            referenced_fields=dict(definition.referenced_fields or {}),
            join_dependencies=[tuple(pair) for pair in definition.join_dependencies or []],
            model_graph_signature=definition.model_graph_signature,
            compiled_sql_hash=definition.compiled_sql_hash,
            metadata=definition.field_metadata,
            created_by=definition.created_by,
            created_at=definition.created_at,
            updated_at=definition.updated_at,
        )


def to_domain(definition: DerivedFieldDefinition) -> DerivedField:
    """Domain view of a saved definition. Status starts active until reconciled."""
    ast = None
    if definition.expression_ast:
        try:
            ast = node_from_dict(definition.expression_ast)
        except ValueError:
            logger.warning("Stored AST for derived field %s is malformed", definition.id)
    return DerivedField(
        id=definition.id,
        name=definition.name,
        expression=definition.expression,
        kind=DerivedFieldKind(definition.kind),
        scope=DerivedFieldScope(definition.scope),
        ast=ast,
        referenced_models=frozenset(definition.referenced_models or []),
        referenced_fields={
            model: frozenset(ids) for model, ids in (definition.referenced_fields or {}).items()
        },
        join_dependencies=tuple(tuple(pair) for pair in definition.join_dependencies or []),
        model_graph_signature=definition.model_graph_signature,
        compiled_sql_hash=definition.compiled_sql_hash,
        template_id=definition.template_id,
    )


def from_reconcile_input(entry: ReconcileFieldInput) -> DerivedField:
    return DerivedField(
        id=entry.id,
        name=entry.name or entry.id,
        expression=entry.expression,
        kind=entry.kind,
        referenced_models=frozenset(entry.referenced_models),
        join_dependencies=tuple(tuple(pair) for pair in entry.join_dependencies),
        status=entry.status,
        visible=entry.visible,
    )
