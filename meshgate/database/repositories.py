# meshgate/database/repositories.py
"""
Repositories - the only place that talks to the SQL session

Each method opens a short-lived session from the factory and returns
detached records (the factory is built with expire_on_commit=False).
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type
import logging

from sqlalchemy import or_
from sqlalchemy.orm import sessionmaker

from .models import AccessToken, Domain, GatewayNetwork, Node

logger = logging.getLogger(__name__)


class NodeRepository:
    """Persistence for Node and its GatewayNetwork rows"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, node_id: int) -> Optional[Node]:
        with self._session_factory() as db:
            return db.get(Node, node_id)

    def get_local(self) -> Optional[Node]:
        with self._session_factory() as db:
            return db.query(Node).filter(Node.is_local.is_(True)).first()

    def get_all(self) -> List[Node]:
        with self._session_factory() as db:
            return db.query(Node).order_by(Node.id).all()

    def find(
        self,
        is_gateway: Optional[bool] = None,
        enabled: Optional[bool] = None,
        wg_interface: Optional[str] = None,
        name: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[Node], int]:
        """
        Filtered listing

        Returns:
            Tuple of (nodes, total count before pagination)
        """
        with self._session_factory() as db:
            query = db.query(Node)

            if is_gateway is not None:
                query = query.filter(Node.is_gateway.is_(is_gateway))
            if enabled is not None:
                query = query.filter(Node.enabled.is_(enabled))
            if wg_interface:
                query = query.filter(Node.wg_interface == wg_interface)
            if name:
                query = query.filter(Node.name.ilike(f"%{name}%"))

            total = query.count()
            query = query.order_by(Node.id).offset(offset)
            if limit:
                query = query.limit(limit)

            return query.all(), total

    def list_by_interface(self, wg_interface: str) -> List[Node]:
        with self._session_factory() as db:
            return (
                db.query(Node)
                .filter(Node.wg_interface == wg_interface)
                .order_by(Node.id)
                .all()
            )

    def list_gateways(self) -> List[Node]:
        with self._session_factory() as db:
            return db.query(Node).filter(Node.is_gateway.is_(True)).order_by(Node.id).all()

    def used_addresses(self, wg_interface: str) -> Set[str]:
        with self._session_factory() as db:
            rows = db.query(Node.address).filter(Node.wg_interface == wg_interface).all()
            return {row[0] for row in rows}

    def add(self, fields: Dict[str, Any], networks: Iterable[str] = ()) -> Node:
        with self._session_factory() as db:
            node = Node(**fields)
            node.gateway_networks = [GatewayNetwork(subnet=s) for s in networks]
            db.add(node)
            db.commit()
            db.refresh(node)
            node.gateway_networks  # load before the session closes
            return node

    def update(self, node_id: int, fields: Dict[str, Any], networks: Optional[Iterable[str]] = None) -> Optional[Node]:
        """
        Update columns and, when `networks` is given, replace the gateway network set
        """
        with self._session_factory() as db:
            node = db.get(Node, node_id)
            if node is None:
                return None

            for key, value in fields.items():
                setattr(node, key, value)

            if networks is not None:
                node.gateway_networks = [GatewayNetwork(subnet=s) for s in networks]

            node.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(node)
            node.gateway_networks  # load before the session closes
            return node

    def delete(self, node_id: int) -> bool:
        with self._session_factory() as db:
            node = db.get(Node, node_id)
            if node is None:
                return False
            db.delete(node)
            db.commit()
            return True


class ServiceRepository:
    """Persistence shared by HttpService and TcpService"""

    def __init__(self, session_factory: sessionmaker, model: Type):
        self._session_factory = session_factory
        self.model = model

    def get(self, service_id: int):
        with self._session_factory() as db:
            return db.get(self.model, service_id)

    def find(self, node_id: Optional[int] = None, domain: Optional[str] = None) -> List:
        with self._session_factory() as db:
            query = db.query(self.model)
            if node_id is not None:
                query = query.filter(self.model.node_id == node_id)
            if domain:
                query = query.filter(self.model.domain == domain)
            return query.order_by(self.model.id).all()

    def list_active(self, now: Optional[datetime] = None) -> List:
        """Enabled, not expired, owned by an enabled node"""
        now = now or datetime.utcnow()
        with self._session_factory() as db:
            return (
                db.query(self.model)
                .join(Node, self.model.node_id == Node.id)
                .filter(
                    self.model.enabled.is_(True),
                    Node.enabled.is_(True),
                    or_(self.model.expires_at.is_(None), self.model.expires_at > now),
                )
                .order_by(self.model.id)
                .all()
            )

    def list_expired(self, now: Optional[datetime] = None) -> List:
        now = now or datetime.utcnow()
        with self._session_factory() as db:
            return (
                db.query(self.model)
                .filter(
                    self.model.enabled.is_(True),
                    self.model.expires_at.isnot(None),
                    self.model.expires_at <= now,
                )
                .all()
            )

    def find_enabled_conflict(self, column: str, value: Any, exclude_id: Optional[int] = None):
        """First enabled service whose `column` equals `value`, other than exclude_id"""
        with self._session_factory() as db:
            query = db.query(self.model).filter(
                getattr(self.model, column) == value,
                self.model.enabled.is_(True),
            )
            if exclude_id is not None:
                query = query.filter(self.model.id != exclude_id)
            return query.first()

    def used_ports(self) -> Set[int]:
        with self._session_factory() as db:
            return {row[0] for row in db.query(self.model.port).all()}

    def add(self, fields: Dict[str, Any]):
        with self._session_factory() as db:
            service = self.model(**fields)
            db.add(service)
            db.commit()
            db.refresh(service)
            service.node  # load before the session closes
            return service

    def update(self, service_id: int, fields: Dict[str, Any]):
        with self._session_factory() as db:
            service = db.get(self.model, service_id)
            if service is None:
                return None
            for key, value in fields.items():
                setattr(service, key, value)
            db.commit()
            db.refresh(service)
            service.node  # load before the session closes
            return service

    def set_enabled(self, service_ids: Iterable[int], enabled: bool) -> int:
        ids = list(service_ids)
        if not ids:
            return 0
        with self._session_factory() as db:
            count = (
                db.query(self.model)
                .filter(self.model.id.in_(ids))
                .update({"enabled": enabled}, synchronize_session=False)
            )
            db.commit()
            return count

    def delete(self, service_id: int) -> bool:
        with self._session_factory() as db:
            service = db.get(self.model, service_id)
            if service is None:
                return False
            db.delete(service)
            db.commit()
            return True


class TokenRepository:
    """Persistence for AccessToken"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def add(self, node_id: int, name: str, token_hash: str) -> AccessToken:
        with self._session_factory() as db:
            token = AccessToken(node_id=node_id, name=name, token_hash=token_hash)
            db.add(token)
            db.commit()
            db.refresh(token)
            return token

    def list_for_node(self, node_id: int) -> List[AccessToken]:
        with self._session_factory() as db:
            return (
                db.query(AccessToken)
                .filter(AccessToken.node_id == node_id)
                .order_by(AccessToken.id)
                .all()
            )

    def find_by_hash(self, token_hash: str) -> Optional[AccessToken]:
        with self._session_factory() as db:
            return db.query(AccessToken).filter(AccessToken.token_hash == token_hash).first()

    def delete(self, node_id: int, token_id: int) -> bool:
        with self._session_factory() as db:
            count = (
                db.query(AccessToken)
                .filter(AccessToken.id == token_id, AccessToken.node_id == node_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return count > 0

    def delete_all(self, node_id: int) -> int:
        with self._session_factory() as db:
            count = (
                db.query(AccessToken)
                .filter(AccessToken.node_id == node_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return count


class DomainRepository:
    """Persistence for Domain"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, domain: str) -> Optional[Domain]:
        with self._session_factory() as db:
            return db.query(Domain).filter(Domain.domain == domain).first()

    def get_all(self) -> List[Domain]:
        with self._session_factory() as db:
            return db.query(Domain).order_by(Domain.domain).all()

    def add(self, domain: str, ssl: bool = True) -> Domain:
        with self._session_factory() as db:
            record = Domain(domain=domain, ssl=ssl)
            db.add(record)
            db.commit()
            db.refresh(record)
            return record
