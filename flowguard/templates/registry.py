"""Static catalog of workflow templates."""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from loguru import logger

from ..models.deployment import CatalogValidation
from ..models.workflow import (
    TemplateCategory,
    TemplatePriority,
    WorkflowDefinition,
    WorkflowTemplate,
)
from .resolver import ConfigurationError, DependencyResolver

TEMPLATES_DIR = Path(__file__).resolve().parent
CATALOG_PATH = TEMPLATES_DIR / "catalog.yaml"


def load_catalog(path: Path = CATALOG_PATH) -> List[WorkflowTemplate]:
    """Load templates from a catalog file.

    Each entry names a definition file relative to ``definitions/`` next to
    the catalog. A missing definition file leaves ``workflow`` empty so the
    problem is reported by :meth:`TemplateRegistry.validate` instead of
    aborting startup.
    """
    with path.open("r", encoding="utf-8") as handle:
        catalog = yaml.safe_load(handle) or {}

    definitions_dir = path.parent / "definitions"
    templates = []
    for entry in catalog.get("templates", []):
        entry = dict(entry)
        definition_file = entry.pop("definition", None)
        workflow: Optional[Dict[str, Any]] = None
        if definition_file:
            definition_path = definitions_dir / definition_file
            if definition_path.exists():
                with definition_path.open("r", encoding="utf-8") as handle:
                    workflow = yaml.safe_load(handle)
            else:
                logger.warning(f"Definition file not found for template {entry.get('id')}: {definition_file}")
        templates.append(WorkflowTemplate(workflow=workflow, **entry))

    logger.info(f"Loaded {len(templates)} workflow templates from {path.name}")
    return templates


class TemplateRegistry:
    """Read-only catalog of templates, in declaration order."""

    def __init__(self, templates: Optional[Iterable[WorkflowTemplate]] = None) -> None:
        self._templates: Tuple[WorkflowTemplate, ...] = tuple(
            load_catalog() if templates is None else templates
        )

    @property
    def templates(self) -> Tuple[WorkflowTemplate, ...]:
        return self._templates

    @property
    def template_ids(self) -> List[str]:
        return [template.id for template in self._templates]

    def get_template(self, template_id: str) -> Optional[WorkflowTemplate]:
        for template in self._templates:
            if template.id == template_id:
                return template
        return None

    def find_by_workflow_name(self, workflow_name: str) -> Optional[WorkflowTemplate]:
        """Template whose embedded workflow is deployed under ``workflow_name``."""
        for template in self._templates:
            if template.workflow and template.workflow.name == workflow_name:
                return template
        return None

    def by_category(self, category: TemplateCategory) -> List[WorkflowTemplate]:
        return [t for t in self._templates if t.category == category]

    def high_priority(self) -> List[WorkflowTemplate]:
        return [t for t in self._templates if t.priority == TemplatePriority.HIGH]

    def dependency_graph(self) -> Dict[str, List[str]]:
        return {template.id: list(template.dependencies) for template in self._templates}

    def resolve_order(self) -> List[WorkflowTemplate]:
        """Templates sorted so that dependencies come first.

        Raises:
            ConfigurationError: if the catalog has unknown or circular dependencies.
        """
        by_id = {template.id: template for template in self._templates}
        return [by_id[template_id] for template_id in DependencyResolver(self.dependency_graph()).resolve()]

    def validate(self) -> CatalogValidation:
        """Check the catalog without raising."""
        errors: List[str] = []
        known_ids = set()

        for template in self._templates:
            label = template.id or "unknown"
            if not template.id or not template.name or template.workflow is None:
                errors.append(f"Template {label} is missing required fields")
            elif not template.workflow.nodes:
                errors.append(f"Template {label} has invalid workflow structure: no nodes")

            if template.id in known_ids:
                errors.append(f"Template {label} is declared more than once")
            known_ids.add(template.id)

        for template in self._templates:
            for dependency in template.dependencies:
                if dependency not in known_ids:
                    errors.append(f"Template {template.id} has unknown dependency: {dependency}")

        if not errors:
            try:
                self.resolve_order()
            except ConfigurationError as e:
                errors.append(str(e))

        return CatalogValidation(valid=not errors, errors=errors)

    def export_all(self) -> Dict[str, WorkflowDefinition]:
        """Embedded definitions keyed by template id."""
        return {t.id: t.workflow for t in self._templates if t.workflow is not None}
