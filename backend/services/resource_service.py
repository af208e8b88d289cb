"""Resource hierarchy and department scope management."""

from __future__ import annotations

import sqlite3
from collections import defaultdict
from dataclasses import replace
from typing import Optional

from backend.domain.models import Resource, ResourceConfig, ResourceNode
from backend.domain.open_hours import parse_window
from backend.repository.data_repository import DataRepository
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_UNSET = object()


class ResourceDirectoryError(Exception):
    """Base exception for resource directory failures."""


class ResourceNotFoundError(ResourceDirectoryError):
    """Raised when a resource number does not exist."""


class DuplicateResourceError(ResourceDirectoryError):
    """Raised when a resource number is already taken."""


class ScopeNotFoundError(ResourceDirectoryError):
    """Raised when a department is not registered for a resource."""


class DuplicateScopeError(ResourceDirectoryError):
    """Raised when a department is already registered for a resource."""


class ResourceDirectoryService:
    """CRUD over resources and scopes plus materialized subtree reads."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def _require_resource(self, resource_number: str) -> Resource:
        resource = self._repository.get_resource(resource_number)
        if resource is None:
            raise ResourceNotFoundError(f"Resource '{resource_number}' not found")
        return resource

    def create_resource(
        self,
        resource_number: str,
        name: str,
        building: str,
        parent_number: Optional[str] = None,
    ) -> Resource:
        logger.info("Creating resource: %s", resource_number)
        if self._repository.resource_exists(resource_number):
            raise DuplicateResourceError(
                f"Resource number '{resource_number}' already exists"
            )
        parent_id = None
        if parent_number is not None:
            parent_id = self._require_resource(parent_number).resource_id
        try:
            resource = self._repository.create_resource(
                resource_number=resource_number,
                name=name,
                building=building,
                parent_id=parent_id,
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateResourceError(
                f"Resource number '{resource_number}' already exists"
            ) from exc
        logger.info("Resource created: %s (id=%s)", resource_number, resource.resource_id)
        return resource

    def update_resource(
        self,
        resource_number: str,
        name: Optional[str] = None,
        building: Optional[str] = None,
    ) -> Resource:
        current = self._require_resource(resource_number)
        updated = self._repository.update_resource(
            resource_number,
            name=name if name is not None else current.name,
            building=building if building is not None else current.building,
        )
        if updated is None:
            raise ResourceNotFoundError(f"Resource '{resource_number}' not found")
        logger.info("Resource updated: %s", resource_number)
        return updated

    def remove_resource(self, resource_number: str) -> None:
        if not self._repository.delete_resource(resource_number):
            raise ResourceNotFoundError(f"Resource '{resource_number}' not found")
        logger.info("Resource removed with descendants: %s", resource_number)

    def _build_forest(self, resources: list[Resource]) -> list[ResourceNode]:
        scopes_by_resource: dict[int, list[ResourceConfig]] = defaultdict(list)
        for scope in self._repository.list_scopes([item.resource_id for item in resources]):
            scopes_by_resource[scope.resource_id].append(scope)

        known_ids = {item.resource_id for item in resources}
        children_by_parent: dict[Optional[int], list[Resource]] = defaultdict(list)
        for item in resources:
            parent = item.parent_id if item.parent_id in known_ids else None
            children_by_parent[parent].append(item)

        # Build bottom-up without recursion: children before their parents.
        ordered: list[Resource] = []
        stack = list(children_by_parent[None])
        while stack:
            current = stack.pop()
            ordered.append(current)
            stack.extend(children_by_parent[current.resource_id])

        nodes: dict[int, ResourceNode] = {}
        for item in reversed(ordered):
            nodes[item.resource_id] = ResourceNode(
                resource=item,
                scopes=tuple(scopes_by_resource[item.resource_id]),
                children=tuple(
                    nodes[child.resource_id]
                    for child in children_by_parent[item.resource_id]
                ),
            )
        return [nodes[root.resource_id] for root in children_by_parent[None]]

    def get_tree(self) -> list[ResourceNode]:
        return self._build_forest(self._repository.list_resources())

    def get_subtree(self, resource_number: str) -> ResourceNode:
        resources = self._repository.list_resources(root_number=resource_number)
        if not resources:
            raise ResourceNotFoundError(f"Resource '{resource_number}' not found")
        forest = self._build_forest(resources)
        return next(
            node for node in forest if node.resource.resource_number == resource_number
        )

    def list_scopes(self, resource_number: str) -> list[ResourceConfig]:
        resource = self._require_resource(resource_number)
        return self._repository.list_scopes([resource.resource_id])

    def add_scope(
        self,
        resource_number: str,
        department: str,
        capacity: int,
        availability_window: Optional[str] = None,
    ) -> ResourceConfig:
        logger.info("Adding department '%s' to resource: %s", department, resource_number)
        if availability_window is not None:
            parse_window(availability_window)
        resource = self._require_resource(resource_number)
        if self._repository.resolve_config(resource_number, department) is not None:
            raise DuplicateScopeError(
                f"Department '{department}' is already registered for "
                f"resource '{resource_number}'"
            )
        config = ResourceConfig(
            resource_id=resource.resource_id,
            resource_number=resource.resource_number,
            department=department,
            capacity=capacity,
            availability_window=availability_window,
        )
        try:
            return self._repository.create_scope(config)
        except sqlite3.IntegrityError as exc:
            raise DuplicateScopeError(
                f"Department '{department}' is already registered for "
                f"resource '{resource_number}'"
            ) from exc

    def _require_scope(self, resource_number: str, department: str) -> ResourceConfig:
        self._require_resource(resource_number)
        config = self._repository.resolve_config(resource_number, department)
        if config is None:
            raise ScopeNotFoundError(
                f"Department '{department}' is not registered for "
                f"resource '{resource_number}'"
            )
        return config

    def update_scope(
        self,
        resource_number: str,
        department: str,
        capacity: Optional[int] = None,
        availability_window: object = _UNSET,
    ) -> ResourceConfig:
        """Patch a scope; pass ``availability_window=None`` to lift the window."""
        config = self._require_scope(resource_number, department)
        if capacity is not None:
            config = replace(config, capacity=capacity)
        if availability_window is not _UNSET:
            if availability_window is not None:
                parse_window(str(availability_window))
            config = replace(
                config,
                availability_window=(
                    str(availability_window) if availability_window is not None else None
                ),
            )
        if not self._repository.save_scope(config):
            raise ScopeNotFoundError(
                f"Department '{department}' is not registered for "
                f"resource '{resource_number}'"
            )
        logger.info("Department '%s' updated for resource '%s'", department, resource_number)
        return config

    def remove_scope(self, resource_number: str, department: str) -> None:
        config = self._require_scope(resource_number, department)
        if not self._repository.delete_scope(config.resource_id, department):
            raise ScopeNotFoundError(
                f"Department '{department}' is not registered for "
                f"resource '{resource_number}'"
            )
        logger.info("Department '%s' removed from resource '%s'", department, resource_number)
