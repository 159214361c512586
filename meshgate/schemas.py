# meshgate/schemas.py
"""
Pydantic Schemas for the admin API

Only shape and basic types are checked here. Domain rules (CIDRs, loopback
backends, port ranges, uniqueness) are enforced by the core validators so the
same rules apply to every caller.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from meshgate.core.validators import subnet_strings


# =============================================================================
# Base
# =============================================================================

class BaseResponse(BaseModel):
    """Schema for simple success responses"""
    success: bool = True
    message: Optional[str] = None
    warnings: List[str] = []


class ErrorResponse(BaseModel):
    """Error envelope returned by the exception handlers"""
    success: bool = False
    error: str
    error_code: str
    details: Optional[Dict[str, Any]] = None
    timestamp: str


# =============================================================================
# Node Schemas
# =============================================================================

class NodeCreate(BaseModel):
    """Schema for creating a node"""
    name: str = Field(..., min_length=1, max_length=100, description="Node name")
    address: Optional[str] = Field(None, description="Requested tunnel address, allocated when omitted")
    wg_interface: Optional[str] = Field(None, max_length=15, description="Tunnel interface, default when omitted")
    is_gateway: bool = False
    allow_internet: bool = False
    enabled: bool = True
    gateway_networks: List[str] = Field(default_factory=list, description="Subnets routed through this node")

    @field_validator("gateway_networks", mode="before")
    @classmethod
    def network_subnets(cls, value):
        return subnet_strings(value)


class NodeUpdate(BaseModel):
    """Schema for updating a node"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    is_gateway: Optional[bool] = None
    allow_internet: Optional[bool] = None
    enabled: Optional[bool] = None
    gateway_networks: Optional[List[str]] = None

    @field_validator("gateway_networks", mode="before")
    @classmethod
    def network_subnets(cls, value):
        return subnet_strings(value)


class NodeResponse(BaseModel):
    """Schema for node response. Private key is never returned."""
    id: int
    name: str
    address: str
    wg_interface: str
    public_key: Optional[str]
    is_gateway: bool
    is_local: bool
    allow_internet: bool
    enabled: bool
    gateway_networks: List[str] = []
    created_at: datetime
    updated_at: datetime

    @field_validator("gateway_networks", mode="before")
    @classmethod
    def network_subnets(cls, value):
        return subnet_strings(value) or []

    model_config = ConfigDict(from_attributes=True)


class NodeMutationResponse(BaseModel):
    """Node after a mutation, with the plain token when one was issued"""
    success: bool = True
    node: NodeResponse
    token: Optional[str] = None
    warnings: List[str] = []


class NodeListResponse(BaseModel):
    nodes: List[NodeResponse]
    total: int
    page: int = 1
    limit: Optional[int] = None


class NodeRuntimeResponse(BaseModel):
    """Live status of a node"""
    node_id: int
    name: str
    address: str
    connected: bool
    last_handshake: Optional[datetime] = None
    rx_bytes: int = 0
    tx_bytes: int = 0
    latency_ms: Optional[float] = None
    endpoint: Optional[str] = None


class NodeConfigResponse(BaseModel):
    node_id: int
    config: str


# =============================================================================
# Token Schemas
# =============================================================================

class TokenCreate(BaseModel):
    name: str = Field("default", min_length=1, max_length=100)


class TokenResponse(BaseModel):
    id: int
    node_id: int
    name: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenIssuedResponse(BaseModel):
    """Returned once; the plain token cannot be retrieved again"""
    token: TokenResponse
    value: str


# =============================================================================
# Service Schemas
# =============================================================================

class HttpServiceCreate(BaseModel):
    """Schema for publishing an HTTP backend"""
    name: str = Field(..., min_length=1, max_length=100)
    node_id: int
    domain: str = Field(..., max_length=253)
    path_location: str = "/"
    backend_proto: str = Field("http", pattern="^(http|https)$")
    backend_host: Optional[str] = Field(None, description="Defaults to the node's tunnel address")
    backend_port: int
    ssl: bool = True
    allowed_ips: Optional[List[str]] = None
    blocked_ips: Optional[List[str]] = None
    enabled: bool = True
    ttl: Optional[str] = Field(None, description="Lifetime such as 30m, 2h or 1d")


class HttpServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    domain: Optional[str] = Field(None, max_length=253)
    path_location: Optional[str] = None
    backend_proto: Optional[str] = Field(None, pattern="^(http|https)$")
    backend_host: Optional[str] = None
    backend_port: Optional[int] = None
    ssl: Optional[bool] = None
    allowed_ips: Optional[List[str]] = None
    blocked_ips: Optional[List[str]] = None
    enabled: Optional[bool] = None
    ttl: Optional[str] = None


class HttpServiceResponse(BaseModel):
    id: int
    name: str
    node_id: int
    domain: str
    path_location: str
    backend_proto: str
    backend_host: Optional[str]
    backend_port: int
    ssl: bool
    allowed_ips: Optional[List[str]]
    blocked_ips: Optional[List[str]]
    enabled: bool
    expires_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TcpServiceCreate(BaseModel):
    """Schema for publishing a TCP or UDP backend"""
    name: str = Field(..., min_length=1, max_length=100)
    node_id: int
    domain: Optional[str] = Field(None, max_length=253)
    proto: str = Field("tcp", pattern="^(tcp|udp)$")
    backend_host: Optional[str] = None
    backend_port: int
    port: Optional[int] = Field(None, description="Public port, allocated when omitted")
    ssl: bool = False
    allowed_ips: Optional[List[str]] = None
    blocked_ips: Optional[List[str]] = None
    enabled: bool = True
    ttl: Optional[str] = None


class TcpServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    domain: Optional[str] = Field(None, max_length=253)
    proto: Optional[str] = Field(None, pattern="^(tcp|udp)$")
    backend_host: Optional[str] = None
    backend_port: Optional[int] = None
    port: Optional[int] = None
    ssl: Optional[bool] = None
    allowed_ips: Optional[List[str]] = None
    blocked_ips: Optional[List[str]] = None
    enabled: Optional[bool] = None
    ttl: Optional[str] = None


class TcpServiceResponse(BaseModel):
    id: int
    name: str
    node_id: int
    domain: Optional[str]
    proto: str
    backend_host: Optional[str]
    backend_port: int
    port: int
    ssl: bool
    allowed_ips: Optional[List[str]]
    blocked_ips: Optional[List[str]]
    enabled: bool
    expires_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class HttpServiceMutationResponse(BaseModel):
    success: bool = True
    service: HttpServiceResponse
    warnings: List[str] = []


class TcpServiceMutationResponse(BaseModel):
    success: bool = True
    service: TcpServiceResponse
    warnings: List[str] = []
