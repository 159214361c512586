# meshgate/database/models.py
"""
SQLAlchemy Database Models for the MeshGate Control Plane

Plain records only. Queries and writes live in repositories.py.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, JSON,
    UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime

Base = declarative_base()


class Node(Base):
    """
    A WireGuard peer in the mesh, or the controller host itself (is_local)
    """
    __tablename__ = "nodes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)

    # Network
    address = Column(String(45), nullable=False,
                     comment="Tunnel address, unique per interface")
    wg_interface = Column(String(15), nullable=False, default="wg0")

    # WireGuard keys (NULL for the local node)
    public_key = Column(String(44), nullable=True, unique=True)
    private_key = Column(String(44), nullable=True)

    # Flags
    is_gateway = Column(Boolean, default=False, nullable=False)
    is_local = Column(Boolean, default=False, nullable=False)
    allow_internet = Column(Boolean, default=False, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    gateway_networks = relationship(
        "GatewayNetwork",
        back_populates="node",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="GatewayNetwork.id",
    )
    http_services = relationship("HttpService", back_populates="node", cascade="all, delete-orphan")
    tcp_services = relationship("TcpService", back_populates="node", cascade="all, delete-orphan")
    tokens = relationship("AccessToken", back_populates="node", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("wg_interface", "address", name="uq_nodes_interface_address"),
    )

    def __repr__(self):
        return f"<Node(id={self.id}, name={self.name}, address={self.address}, gateway={self.is_gateway})>"


class GatewayNetwork(Base):
    """A subnet routed into the mesh through a gateway node"""
    __tablename__ = "gateway_networks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    subnet = Column(String(49), nullable=False)

    node = relationship("Node", back_populates="gateway_networks")


class HttpService(Base):
    """HTTP backend published under a domain"""
    __tablename__ = "http_services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    domain = Column(String(253), nullable=False, index=True)
    path_location = Column(String(255), default="/", nullable=False)

    backend_proto = Column(String(5), default="http", nullable=False)
    backend_host = Column(String(253), nullable=True,
                          comment="NULL means the owning node's tunnel address")
    backend_port = Column(Integer, nullable=False)

    ssl = Column(Boolean, default=True, nullable=False)
    allowed_ips = Column(JSON, nullable=True)
    blocked_ips = Column(JSON, nullable=True)

    enabled = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    node = relationship("Node", back_populates="http_services", lazy="joined")


class TcpService(Base):
    """TCP/UDP backend published on a public port"""
    __tablename__ = "tcp_services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    domain = Column(String(253), nullable=True)
    proto = Column(String(3), default="tcp", nullable=False)

    backend_host = Column(String(253), nullable=True,
                          comment="NULL means the owning node's tunnel address")
    backend_port = Column(Integer, nullable=False)
    port = Column(Integer, nullable=False, index=True)

    ssl = Column(Boolean, default=False, nullable=False)
    allowed_ips = Column(JSON, nullable=True)
    blocked_ips = Column(JSON, nullable=True)

    enabled = Column(Boolean, default=True, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False, index=True)
    node = relationship("Node", back_populates="tcp_services", lazy="joined")


class AccessToken(Base):
    """Opaque bearer token bound to a node. Only the hash is stored."""
    __tablename__ = "access_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    node_id = Column(Integer, ForeignKey("nodes.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), default="default", nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    node = relationship("Node", back_populates="tokens")

    __table_args__ = (
        Index("ix_access_tokens_node_name", "node_id", "name"),
    )


class Domain(Base):
    """Domain registered before a service may bind to it"""
    __tablename__ = "domains"

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(String(253), unique=True, nullable=False)
    ssl = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
