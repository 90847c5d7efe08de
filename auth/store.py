"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. CredentialStore is the repository for
users, sessions and verification codes; the _row_to_* functions are the
mappers. Services never touch SQL directly, and the gateway never touches
the store at all.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps:
  Stored as ISO-8601 UTC strings with fixed microsecond precision (to_iso).
  A fixed width means string comparison in SQL is chronological comparison,
  which the expiry filters below rely on.

Atomicity:
  consume_code() is a conditional UPDATE (used = 0 in the WHERE clause), so
  two concurrent consumers of the same row cannot both see rowcount 1.
  Session replacement (delete_user_sessions + create_session) is NOT wrapped
  in a transaction; a crash between the two leaves zero sessions.

Layer rule: no imports from api/, gateway/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select, text
from sqlalchemy.engine import Engine

from auth.models import AccountOrigin, Session, User, VerificationCode

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("origin", String(16), nullable=False, server_default="local"),
    Column("hashed_password", Text),  # NULL for federated users
    Column("external_provider", String(30)),
    Column("external_id", Text),
    Column("avatar_url", Text),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_verification_codes = Table(
    "verification_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, index=True),
    Column("code", String(6), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize a datetime to the fixed-width UTC form used in every column."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return to_iso(utc_now())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Session and VerificationCode records.

    Usage:
        store = CredentialStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@x.com", name="Ann", hashed_password=h))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> None:
        """Round-trip a trivial query. Raises SQLAlchemyError if the DB is unreachable."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        AuthCore translates that into a Conflict for the losing side of a
        concurrent registration.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    name=user.name,
                    origin=user.origin.value,
                    hashed_password=user.hashed_password,
                    external_provider=user.external_provider,
                    external_id=user.external_id,
                    avatar_url=user.avatar_url,
                    verified=1 if user.is_verified else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_external_id(self, provider: str, external_id: str) -> User | None:
        """Look up a federated user by (provider, subject). Returns None if not linked yet."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.external_provider == provider) & (_users.c.external_id == external_id)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def mark_verified(self, email: str) -> bool:
        """Set verified=1 for the email. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.email == email).values(verified=1))
            conn.commit()
        return result.rowcount > 0

    def search_users(self, query: str, limit: int) -> list[User]:
        """Verified users whose name or email contains query (case-insensitive), by name."""
        escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        matches = or_(_users.c.name.ilike(pattern, escape="\\"), _users.c.email.ilike(pattern, escape="\\"))
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .where(_users.c.verified == 1)
                .where(matches)
                .order_by(_users.c.name, _users.c.id)
                .limit(limit)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    def save_verification_code(self, vc: VerificationCode) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _verification_codes.insert().values(
                    email=vc.email,
                    code=vc.code,
                    expires_at=vc.expires_at,
                    used=1 if vc.used else 0,
                    created_at=vc.created_at or _now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_latest_code(self, email: str, code: str) -> VerificationCode | None:
        """Return the most recently created row for (email, code), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _verification_codes.select()
                .where((_verification_codes.c.email == email) & (_verification_codes.c.code == code))
                .order_by(_verification_codes.c.created_at.desc(), _verification_codes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    def consume_code(self, code_id: int) -> bool:
        """Atomically flip used 0 -> 1. Returns False if the row was already used."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _verification_codes.update()
                .where((_verification_codes.c.id == code_id) & (_verification_codes.c.used == 0))
                .values(used=1)
            )
            conn.commit()
        return result.rowcount == 1

    def delete_expired_codes(self, email: str) -> int:
        """Delete the email's codes whose expiry has passed. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _verification_codes.delete().where(
                    (_verification_codes.c.email == email) & (_verification_codes.c.expires_at < _now_iso())
                )
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=session.user_id,
                    token=session.token,
                    expires_at=session.expires_at,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def delete_user_sessions(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_session(self, token: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
            conn.commit()
        return result.rowcount

    def get_user_by_session_token(self, token: str) -> User | None:
        """Join session -> user for an exact, unexpired token match."""
        stmt = (
            select(_users)
            .select_from(_users.join(_sessions, _users.c.id == _sessions.c.user_id))
            .where((_sessions.c.token == token) & (_sessions.c.expires_at > _now_iso()))
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_live_sessions(self, user_id: int) -> list[Session]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > _now_iso()))
                .order_by(_sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        origin=AccountOrigin(row.origin),
        hashed_password=row.hashed_password,
        external_provider=row.external_provider,
        external_id=row.external_id,
        avatar_url=row.avatar_url,
        is_verified=bool(row.verified),
        created_at=row.created_at,
    )


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        email=row.email,
        code=row.code,
        expires_at=row.expires_at,
        used=bool(row.used),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
