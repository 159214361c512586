# meshgate/core/tokens.py
"""
Access Token Issuer

Tokens are opaque bearer strings bound to a node. Only the SHA-256 hash is
persisted; the plain value is returned once, at issue time.
"""

import hashlib
import logging
import secrets
from typing import List, Optional, Tuple

from meshgate.database.models import AccessToken
from meshgate.database.repositories import TokenRepository

from .errors import NotFound

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_NAME = "default"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class TokenIssuer:
    def __init__(self, repository: TokenRepository):
        self.tokens = repository

    def issue(self, node_id: int, name: str = DEFAULT_TOKEN_NAME) -> Tuple[AccessToken, str]:
        """
        Create a token for a node

        Returns:
            Tuple of (stored record, plain token string)
        """
        token = secrets.token_urlsafe(32)
        record = self.tokens.add(node_id, name, hash_token(token))
        logger.info(f"Issued token '{name}' for node {node_id}")
        return record, token

    def list(self, node_id: int) -> List[AccessToken]:
        return self.tokens.list_for_node(node_id)

    def verify(self, token: str) -> Optional[AccessToken]:
        """Record matching a presented bearer string, or None"""
        if not token:
            return None
        return self.tokens.find_by_hash(hash_token(token))

    def revoke(self, node_id: int, token_id: int) -> None:
        if not self.tokens.delete(node_id, token_id):
            raise NotFound(f"Token {token_id} not found for node {node_id}")
        logger.info(f"Revoked token {token_id} of node {node_id}")

    def revoke_all(self, node_id: int) -> int:
        count = self.tokens.delete_all(node_id)
        logger.info(f"Revoked {count} tokens of node {node_id}")
        return count
