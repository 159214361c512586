# meshgate/api/v1/nodes.py
"""
Node Management Endpoints
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from meshgate.bootstrap import Components
from meshgate.core.node_manager import NodeResult
from meshgate.schemas import (
    BaseResponse,
    ErrorResponse,
    NodeConfigResponse,
    NodeCreate,
    NodeListResponse,
    NodeMutationResponse,
    NodeResponse,
    NodeRuntimeResponse,
    NodeUpdate,
    TokenCreate,
    TokenIssuedResponse,
    TokenResponse,
)
from meshgate.wireguard.service import NodeInfo

from .deps import get_components, verify_admin_token

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_admin_token)])


def _mutation_response(result: NodeResult) -> NodeMutationResponse:
    return NodeMutationResponse(
        node=NodeResponse.model_validate(result.node),
        token=result.token,
        warnings=result.warnings,
    )


def _runtime_response(info: NodeInfo) -> NodeRuntimeResponse:
    return NodeRuntimeResponse(
        node_id=info.node.id,
        name=info.node.name,
        address=info.node.address,
        connected=info.connected,
        last_handshake=info.last_handshake,
        rx_bytes=info.rx_bytes,
        tx_bytes=info.tx_bytes,
        latency_ms=info.latency_ms,
        endpoint=info.endpoint,
    )


@router.get(
    "/nodes",
    response_model=NodeListResponse,
    summary="List nodes",
)
async def list_nodes(
    is_gateway: Optional[bool] = Query(None),
    enabled: Optional[bool] = Query(None),
    wg_interface: Optional[str] = Query(None),
    name: Optional[str] = Query(None, description="Substring match"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    page: int = Query(1, ge=1),
    components: Components = Depends(get_components),
):
    nodes, total = components.node_manager.list_nodes(
        is_gateway=is_gateway,
        enabled=enabled,
        wg_interface=wg_interface,
        name=name,
        limit=limit,
        page=page,
    )
    return NodeListResponse(
        nodes=[NodeResponse.model_validate(n) for n in nodes],
        total=total,
        page=page,
        limit=limit,
    )


@router.post(
    "/nodes",
    response_model=NodeMutationResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Create a node",
)
async def create_node(
    request: NodeCreate,
    components: Components = Depends(get_components),
):
    result = await components.node_manager.create_node(request)
    return _mutation_response(result)


@router.get(
    "/nodes/runtime",
    response_model=List[NodeRuntimeResponse],
    summary="Live status of all nodes",
)
async def list_nodes_runtime(
    wg_interface: Optional[str] = Query(None),
    probe: bool = Query(False, description="Ping each node"),
    components: Components = Depends(get_components),
):
    infos = await components.node_manager.get_nodes_runtime(wg_interface=wg_interface, probe=probe)
    return [_runtime_response(info) for info in infos]


@router.get(
    "/nodes/{node_id}",
    response_model=NodeResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get node by ID",
)
async def get_node(
    node_id: int,
    components: Components = Depends(get_components),
):
    return NodeResponse.model_validate(components.node_manager.get_node(node_id))


@router.patch(
    "/nodes/{node_id}",
    response_model=NodeMutationResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update a node",
)
async def update_node(
    node_id: int,
    changes: NodeUpdate,
    components: Components = Depends(get_components),
):
    result = await components.node_manager.update_node(node_id, changes.model_dump(exclude_unset=True))
    return _mutation_response(result)


@router.delete(
    "/nodes/{node_id}",
    response_model=BaseResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Delete a node",
)
async def delete_node(
    node_id: int,
    components: Components = Depends(get_components),
):
    warnings = await components.node_manager.delete_node(node_id)
    return BaseResponse(message=f"Node {node_id} deleted", warnings=warnings)


@router.post("/nodes/{node_id}/enable", response_model=NodeMutationResponse)
async def enable_node(node_id: int, components: Components = Depends(get_components)):
    return _mutation_response(await components.node_manager.enable_node(node_id))


@router.post("/nodes/{node_id}/disable", response_model=NodeMutationResponse)
async def disable_node(node_id: int, components: Components = Depends(get_components)):
    return _mutation_response(await components.node_manager.disable_node(node_id))


@router.post(
    "/nodes/{node_id}/regenerate",
    response_model=NodeMutationResponse,
    summary="Rotate keys and address, reissue the token",
)
async def regenerate_node(node_id: int, components: Components = Depends(get_components)):
    return _mutation_response(await components.node_manager.regenerate_node_keys(node_id))


@router.get("/nodes/{node_id}/config", response_model=NodeConfigResponse)
async def get_node_config(node_id: int, components: Components = Depends(get_components)):
    return NodeConfigResponse(node_id=node_id, config=components.node_manager.get_node_config(node_id))


@router.get("/nodes/{node_id}/download", response_class=PlainTextResponse)
async def download_node_config(node_id: int, components: Components = Depends(get_components)):
    """WireGuard config as a file attachment"""
    node = components.node_manager.get_node(node_id)
    config = components.node_manager.get_node_config(node_id)
    return PlainTextResponse(
        config,
        headers={"Content-Disposition": f'attachment; filename="{node.name}.conf"'},
    )


@router.get("/nodes/{node_id}/runtime", response_model=NodeRuntimeResponse)
async def get_node_runtime(
    node_id: int,
    probe: bool = Query(False),
    components: Components = Depends(get_components),
):
    return _runtime_response(await components.node_manager.get_node_info(node_id, probe=probe))


# === Tokens ===

@router.get("/nodes/{node_id}/tokens", response_model=List[TokenResponse])
async def list_node_tokens(node_id: int, components: Components = Depends(get_components)):
    return [TokenResponse.model_validate(t) for t in components.node_manager.list_node_tokens(node_id)]


@router.post("/nodes/{node_id}/tokens", response_model=TokenIssuedResponse, status_code=201)
async def create_node_token(
    node_id: int,
    request: TokenCreate,
    components: Components = Depends(get_components),
):
    record, value = components.node_manager.create_node_token(node_id, request.name)
    return TokenIssuedResponse(token=TokenResponse.model_validate(record), value=value)


@router.delete("/nodes/{node_id}/tokens/{token_id}", response_model=BaseResponse)
async def revoke_node_token(
    node_id: int,
    token_id: int,
    components: Components = Depends(get_components),
):
    components.node_manager.revoke_node_token(node_id, token_id)
    return BaseResponse(message=f"Token {token_id} revoked")
