"""Workflow template catalog and dependency ordering."""

from .registry import TemplateRegistry, load_catalog
from .resolver import ConfigurationError, DependencyResolver

__all__ = ["ConfigurationError", "DependencyResolver", "TemplateRegistry", "load_catalog"]
