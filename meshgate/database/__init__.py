# meshgate/database/__init__.py
"""
Database modules
"""

from .session import create_db_engine, create_session_factory, init_db, check_connection
from .models import Base, Node, GatewayNetwork, HttpService, TcpService, AccessToken, Domain
from .repositories import NodeRepository, ServiceRepository, TokenRepository, DomainRepository

__all__ = [
    # Session
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "check_connection",
    # Models
    "Base",
    "Node",
    "GatewayNetwork",
    "HttpService",
    "TcpService",
    "AccessToken",
    "Domain",
    # Repositories
    "NodeRepository",
    "ServiceRepository",
    "TokenRepository",
    "DomainRepository",
]
