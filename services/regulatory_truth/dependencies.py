"""
API Dependencies
================

FastAPI providers for the service container built at startup.

Version: 0.1.0
"""

from fastapi import Depends, HTTPException, Request, status

from services.regulatory_truth.container import ServiceContainer
from services.regulatory_truth.services import AdminService, RuleQueryService, StatusService


def get_container(request: Request) -> ServiceContainer:
    container: ServiceContainer | None = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return container


def get_query_service(container: ServiceContainer = Depends(get_container)) -> RuleQueryService:
    return container.query


def get_status_service(container: ServiceContainer = Depends(get_container)) -> StatusService:
    return container.status


def get_admin_service(container: ServiceContainer = Depends(get_container)) -> AdminService:
    return container.admin
