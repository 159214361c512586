# meshgate/api/v1/services.py
"""
Published Service Endpoints (HTTP and TCP)
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from meshgate.bootstrap import Components
from meshgate.schemas import (
    BaseResponse,
    ErrorResponse,
    HttpServiceCreate,
    HttpServiceMutationResponse,
    HttpServiceResponse,
    HttpServiceUpdate,
    TcpServiceCreate,
    TcpServiceMutationResponse,
    TcpServiceResponse,
    TcpServiceUpdate,
)

from .deps import get_components, verify_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_admin_token)])


# === HTTP services ===

@router.get("/services/http", response_model=List[HttpServiceResponse])
async def list_http_services(
    node_id: Optional[int] = Query(None),
    domain: Optional[str] = Query(None),
    components: Components = Depends(get_components),
):
    services = components.http_services.list(node_id=node_id, domain=domain)
    return [HttpServiceResponse.model_validate(s) for s in services]


@router.post(
    "/services/http",
    response_model=HttpServiceMutationResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_http_service(
    request: HttpServiceCreate,
    components: Components = Depends(get_components),
):
    result = await components.http_services.create(request.model_dump())
    return HttpServiceMutationResponse(
        service=HttpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.get("/services/http/{service_id}", response_model=HttpServiceResponse)
async def get_http_service(service_id: int, components: Components = Depends(get_components)):
    return HttpServiceResponse.model_validate(components.http_services.get(service_id))


@router.patch("/services/http/{service_id}", response_model=HttpServiceMutationResponse)
async def update_http_service(
    service_id: int,
    changes: HttpServiceUpdate,
    components: Components = Depends(get_components),
):
    result = await components.http_services.update(service_id, changes.model_dump(exclude_unset=True))
    return HttpServiceMutationResponse(
        service=HttpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.delete("/services/http/{service_id}", response_model=BaseResponse)
async def delete_http_service(service_id: int, components: Components = Depends(get_components)):
    warnings = await components.http_services.delete(service_id)
    return BaseResponse(message=f"HTTP service {service_id} deleted", warnings=warnings)


@router.post("/services/http/{service_id}/enable", response_model=HttpServiceMutationResponse)
async def enable_http_service(service_id: int, components: Components = Depends(get_components)):
    result = await components.http_services.enable(service_id)
    return HttpServiceMutationResponse(
        service=HttpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.post("/services/http/{service_id}/disable", response_model=HttpServiceMutationResponse)
async def disable_http_service(service_id: int, components: Components = Depends(get_components)):
    result = await components.http_services.disable(service_id)
    return HttpServiceMutationResponse(
        service=HttpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


# === TCP services ===

@router.get("/services/tcp", response_model=List[TcpServiceResponse])
async def list_tcp_services(
    node_id: Optional[int] = Query(None),
    domain: Optional[str] = Query(None),
    components: Components = Depends(get_components),
):
    services = components.tcp_services.list(node_id=node_id, domain=domain)
    return [TcpServiceResponse.model_validate(s) for s in services]


@router.post(
    "/services/tcp",
    response_model=TcpServiceMutationResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def create_tcp_service(
    request: TcpServiceCreate,
    components: Components = Depends(get_components),
):
    result = await components.tcp_services.create(request.model_dump())
    return TcpServiceMutationResponse(
        service=TcpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.get("/services/tcp/{service_id}", response_model=TcpServiceResponse)
async def get_tcp_service(service_id: int, components: Components = Depends(get_components)):
    return TcpServiceResponse.model_validate(components.tcp_services.get(service_id))


@router.patch("/services/tcp/{service_id}", response_model=TcpServiceMutationResponse)
async def update_tcp_service(
    service_id: int,
    changes: TcpServiceUpdate,
    components: Components = Depends(get_components),
):
    result = await components.tcp_services.update(service_id, changes.model_dump(exclude_unset=True))
    return TcpServiceMutationResponse(
        service=TcpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.delete("/services/tcp/{service_id}", response_model=BaseResponse)
async def delete_tcp_service(service_id: int, components: Components = Depends(get_components)):
    warnings = await components.tcp_services.delete(service_id)
    return BaseResponse(message=f"TCP service {service_id} deleted", warnings=warnings)


@router.post("/services/tcp/{service_id}/enable", response_model=TcpServiceMutationResponse)
async def enable_tcp_service(service_id: int, components: Components = Depends(get_components)):
    result = await components.tcp_services.enable(service_id)
    return TcpServiceMutationResponse(
        service=TcpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )


@router.post("/services/tcp/{service_id}/disable", response_model=TcpServiceMutationResponse)
async def disable_tcp_service(service_id: int, components: Components = Depends(get_components)):
    result = await components.tcp_services.disable(service_id)
    return TcpServiceMutationResponse(
        service=TcpServiceResponse.model_validate(result.service),
        warnings=result.warnings,
    )
