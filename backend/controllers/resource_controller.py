"""HTTP controller layer for the resource hierarchy and department scopes."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import get_resource_service
from backend.domain.models import Resource, ResourceConfig, ResourceNode
from backend.domain.open_hours import MalformedWindowError, parse_window
from backend.services.resource_service import (
    DuplicateResourceError,
    DuplicateScopeError,
    ResourceDirectoryService,
    ResourceNotFoundError,
    ScopeNotFoundError,
)
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/resources", tags=["resources"])

WINDOW_FORMAT_HINT = (
    'availability_window must be "Always open" or match the pattern '
    '"Mon to Fri (9AM to 6PM)"'
)


def _validate_window(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        parse_window(value)
    except MalformedWindowError as exc:
        raise ValueError(WINDOW_FORMAT_HINT) from exc
    return value


class CreateResourceRequest(BaseModel):
    resource_number: str = Field(
        min_length=1,
        pattern=settings.resource_number_regex,
        examples=["A-01-01"],
    )
    name: str = Field(min_length=1, examples=["Meeting Room 1"])
    building: str = Field(min_length=1, examples=["A"])
    parent_number: Optional[str] = Field(default=None, examples=["A-01"])


class UpdateResourceRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    building: Optional[str] = Field(default=None, min_length=1)


class CreateScopeRequest(BaseModel):
    department: str = Field(
        min_length=1,
        max_length=settings.department_max_length,
        examples=["EFM"],
    )
    capacity: int = Field(ge=1, examples=[10])
    availability_window: Optional[str] = Field(
        default=None,
        examples=["Mon to Fri (9AM to 6PM)"],
    )

    @field_validator("availability_window")
    @classmethod
    def validate_availability_window(cls, value: Optional[str]) -> Optional[str]:
        return _validate_window(value)


class UpdateScopeRequest(BaseModel):
    """Omitted fields are left untouched; an explicit null window lifts it."""

    capacity: Optional[int] = Field(default=None, ge=1)
    availability_window: Optional[str] = None

    @field_validator("availability_window")
    @classmethod
    def validate_availability_window(cls, value: Optional[str]) -> Optional[str]:
        return _validate_window(value)


class ScopeResponse(BaseModel):
    department: str
    capacity: int
    availability_window: Optional[str]

    @classmethod
    def from_domain(cls, config: ResourceConfig) -> "ScopeResponse":
        return cls(
            department=config.department,
            capacity=config.capacity,
            availability_window=config.availability_window,
        )


class ResourceResponse(BaseModel):
    id: int
    resource_number: str
    name: str
    building: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, resource: Resource) -> "ResourceResponse":
        return cls(
            id=resource.resource_id,
            resource_number=resource.resource_number,
            name=resource.name,
            building=resource.building,
            created_at=resource.created_at,
            updated_at=resource.updated_at,
        )


class ResourceNodeResponse(ResourceResponse):
    scopes: list[ScopeResponse] = Field(default_factory=list)
    children: list["ResourceNodeResponse"] = Field(default_factory=list)

    @classmethod
    def from_node(cls, node: ResourceNode) -> "ResourceNodeResponse":
        base = ResourceResponse.from_domain(node.resource)
        return cls(
            **base.model_dump(),
            scopes=[ScopeResponse.from_domain(scope) for scope in node.scopes],
            children=[cls.from_node(child) for child in node.children],
        )


ResourceNodeResponse.model_rebuild()


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.post("", response_model=ResourceResponse, status_code=status.HTTP_201_CREATED)
def create_resource(
    payload: CreateResourceRequest,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        resource = service.create_resource(
            resource_number=payload.resource_number,
            name=payload.name,
            building=payload.building,
            parent_number=payload.parent_number,
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DuplicateResourceError as exc:
        raise _conflict(exc) from exc
    return ResourceResponse.from_domain(resource)


@router.get("/tree", response_model=list[ResourceNodeResponse])
def get_resource_tree(
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> list[ResourceNodeResponse]:
    return [ResourceNodeResponse.from_node(node) for node in service.get_tree()]


@router.get("/{resource_number}", response_model=ResourceNodeResponse)
def get_resource(
    resource_number: str,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> ResourceNodeResponse:
    try:
        return ResourceNodeResponse.from_node(service.get_subtree(resource_number))
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc


@router.patch("/{resource_number}", response_model=ResourceResponse)
def update_resource(
    resource_number: str,
    payload: UpdateResourceRequest,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> ResourceResponse:
    try:
        resource = service.update_resource(
            resource_number,
            name=payload.name,
            building=payload.building,
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    return ResourceResponse.from_domain(resource)


@router.delete("/{resource_number}", status_code=status.HTTP_204_NO_CONTENT)
def delete_resource(
    resource_number: str,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> Response:
    try:
        service.remove_resource(resource_number)
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{resource_number}/scopes", response_model=list[ScopeResponse])
def list_scopes(
    resource_number: str,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> list[ScopeResponse]:
    try:
        return [ScopeResponse.from_domain(item) for item in service.list_scopes(resource_number)]
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc


@router.post(
    "/{resource_number}/scopes",
    response_model=ScopeResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_scope(
    resource_number: str,
    payload: CreateScopeRequest,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> ScopeResponse:
    try:
        config = service.add_scope(
            resource_number,
            department=payload.department,
            capacity=payload.capacity,
            availability_window=payload.availability_window,
        )
    except ResourceNotFoundError as exc:
        raise _not_found(exc) from exc
    except DuplicateScopeError as exc:
        raise _conflict(exc) from exc
    return ScopeResponse.from_domain(config)


@router.patch("/{resource_number}/scopes/{department}", response_model=ScopeResponse)
def update_scope(
    resource_number: str,
    department: str,
    payload: UpdateScopeRequest,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> ScopeResponse:
    changes: dict[str, object] = {"capacity": payload.capacity}
    if "availability_window" in payload.model_fields_set:
        changes["availability_window"] = payload.availability_window
    try:
        config = service.update_scope(resource_number, department, **changes)
    except (ResourceNotFoundError, ScopeNotFoundError) as exc:
        raise _not_found(exc) from exc
    return ScopeResponse.from_domain(config)


@router.delete(
    "/{resource_number}/scopes/{department}",
    status_code=status.HTTP_204_NO_CONTENT,
)
def delete_scope(
    resource_number: str,
    department: str,
    service: ResourceDirectoryService = Depends(get_resource_service),
) -> Response:
    try:
        service.remove_scope(resource_number, department)
    except (ResourceNotFoundError, ScopeNotFoundError) as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
