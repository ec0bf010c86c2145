from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import parse_qs

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.security import decode_access_token
from app.db.session import SessionLocal
from app.services.admin_service import normalize_role
from app.services.auth_service import get_user_by_id

logger = get_logger(__name__)


@dataclass
class ConnectionIdentity:
    user_id: int | None
    username: str | None
    role: str = "user"
    level: int = 1

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and bool(self.username)


def anonymous_identity() -> ConnectionIdentity:
    return ConnectionIdentity(user_id=None, username=None)


@dataclass
class Connection:
    sid: str
    identity: ConnectionIdentity
    client_ip: str = "unknown"
    # room id -> username the connection joined that room as
    rooms: dict[str, str] = field(default_factory=dict)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


IdentityLoader = Callable[[int], ConnectionIdentity | None]


def resolve_token(auth: dict | None, environ: dict) -> str | None:
    token = auth.get("token") if isinstance(auth, dict) else None
    if not token:
        token = environ.get("HTTP_AUTHORIZATION")
    if not token and get_settings().websocket_allow_query_token:
        token = parse_qs(environ.get("QUERY_STRING", "")).get("token", [None])[0]
    if isinstance(token, str) and token.lower().startswith("bearer "):
        token = token.split(" ", 1)[1]
    return token.strip() if isinstance(token, str) and token.strip() else None


def extract_client_ip(environ: dict) -> str:
    forwarded_for = environ.get("HTTP_X_FORWARDED_FOR", "")
    if isinstance(forwarded_for, str) and forwarded_for.strip():
        return forwarded_for.split(",")[0].strip()
    real_ip = environ.get("HTTP_X_REAL_IP", "")
    if isinstance(real_ip, str) and real_ip.strip():
        return real_ip.strip()
    remote = environ.get("REMOTE_ADDR", "")
    if isinstance(remote, str) and remote.strip():
        return remote.strip()
    return "unknown"


def load_identity_from_db(user_id: int) -> ConnectionIdentity | None:
    db = SessionLocal()
    try:
        user = get_user_by_id(db, user_id)
        if not user:
            return None
        return ConnectionIdentity(
            user_id=user.id,
            username=user.username,
            role=normalize_role(user.role),
            level=user.level or 1,
        )
    finally:
        db.close()


class ConnectionRegistry:
    """Maps live socket ids to the identity resolved when they connected.

    Identity is resolved once; a token revoked afterwards stays valid for
    that connection until it disconnects.
    """

    def __init__(self, identity_loader: IdentityLoader | None = None) -> None:
        self._identity_loader = identity_loader or load_identity_from_db
        self._connections: dict[str, Connection] = {}

    def authenticate(self, token: str | None) -> ConnectionIdentity:
        if not token:
            return anonymous_identity()
        user_id = decode_access_token(token)
        if user_id is None:
            logger.info("Rejected socket credential, continuing as anonymous")
            return anonymous_identity()
        try:
            identity = self._identity_loader(user_id)
        except SQLAlchemyError:
            logger.exception("Identity lookup failed for user %s", user_id)
            return anonymous_identity()
        return identity or anonymous_identity()

    def bind(self, sid: str, identity: ConnectionIdentity, client_ip: str = "unknown") -> Connection:
        connection = Connection(sid=sid, identity=identity, client_ip=client_ip)
        self._connections[sid] = connection
        return connection

    def unbind(self, sid: str) -> Connection | None:
        return self._connections.pop(sid, None)

    def get(self, sid: str) -> Connection | None:
        return self._connections.get(sid)

    def identity(self, sid: str) -> ConnectionIdentity:
        connection = self._connections.get(sid)
        return connection.identity if connection else anonymous_identity()

    def sids_in_room(self, room_id: str, username: str) -> list[str]:
        return [
            sid
            for sid, connection in self._connections.items()
            if connection.rooms.get(room_id) == username
        ]

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def clear(self) -> None:
        self._connections.clear()
