"""Dependency ordering for workflow templates."""

from typing import Dict, List, Mapping, Sequence, Set

from loguru import logger


class ConfigurationError(ValueError):
    """The template catalog is malformed (unknown or circular dependency).

    Raised before anything is pushed to the engine and never retried.
    """


class DependencyResolver:
    """Topological sort over an adjacency list of template ids.

    ``graph`` maps each template id to the ids it depends on. Iteration order
    of ``graph`` is the catalog order, which independent templates keep.
    """

    def __init__(self, graph: Mapping[str, Sequence[str]]) -> None:
        self.graph: Dict[str, List[str]] = {
            template_id: list(dependencies) for template_id, dependencies in graph.items()
        }

    def resolve(self) -> List[str]:
        """Return every id after all of its dependencies.

        Raises:
            ConfigurationError: on an unknown dependency or a cycle. No partial
                ordering is returned in that case.
        """
        ordered: List[str] = []
        visited: Set[str] = set()
        visiting: Set[str] = set()

        def visit(template_id: str) -> None:
            if template_id in visiting:
                raise ConfigurationError(f"Circular dependency detected: {template_id}")
            if template_id in visited:
                return

            visiting.add(template_id)
            for dependency in self.graph[template_id]:
                if dependency not in self.graph:
                    raise ConfigurationError(
                        f"Template {template_id} has unknown dependency: {dependency}"
                    )
                visit(dependency)
            visiting.discard(template_id)

            visited.add(template_id)
            ordered.append(template_id)

        for template_id in self.graph:
            visit(template_id)

        logger.debug(f"Resolved deployment order: {', '.join(ordered)}")
        return ordered
