"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Resolver and route
code never touches SQL directly.

Uniqueness:
  users.email is UNIQUE. Provider links live in their own table with
  UNIQUE(provider, subject) and UNIQUE(user_id, provider). The database
  enforces all three, so two concurrent creates for the same email or link
  cannot both commit: the loser gets IntegrityError, which create() turns into
  DuplicateIdentity. A read-then-write check in Python could not give that
  guarantee.

  email is nullable. Both SQLite and PostgreSQL treat NULLs as distinct in a
  UNIQUE index, so any number of email-less OAuth accounts can coexist.

Errors:
  IntegrityError -> DuplicateIdentity. Any other SQLAlchemyError ->
  StoreUnavailable. No driver exception escapes this module.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateIdentity, StoreUnavailable
from auth.models import User

logger = logging.getLogger("authkit.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, assigned in create()
    Column("name", String(255), nullable=False),
    Column("email", String(320), unique=True),  # NULL for email-less OAuth accounts
    Column("password_hash", Text),  # NULL for OAuth-only accounts
    Column("is_email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_provider_links = Table(
    "provider_links",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("provider", String(30), nullable=False),  # "github", "google"
    Column("subject", String(255), nullable=False),  # provider's stable user ID
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "subject", name="uq_provider_subject"),
    UniqueConstraint("user_id", "provider", name="uq_user_provider"),
)


# ---------------------------------------------------------------------------
# SQLite connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    SQLite ignores FOREIGN KEY clauses, including ON DELETE CASCADE, unless
    foreign_keys is switched on for the connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_email(email: str | None) -> str | None:
    return email.strip().lower() if email else None


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into the auth error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        logger.info("Uniqueness conflict during %s", action)
        raise DuplicateIdentity() from exc
    except SQLAlchemyError as exc:
        logger.exception("Credential store failure during %s", action)
        raise StoreUnavailable() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities and their provider links.

    Usage:
        store = UserStore("sqlite:///authkit.db")
        user = store.create(User(name="Ada", email="ada@example.com", password_hash=h))
        same = store.find_by_email("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        with _store_errors("schema creation"):
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with _store_errors("find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            return self._load(conn, row)

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        normalized = _normalize_email(email)
        if normalized is None:
            return None
        with _store_errors("find_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalized)).fetchone()
            return self._load(conn, row)

    def find_by_provider_link(self, provider: str, subject_id: str) -> User | None:
        """Look up the user linked to (provider, subject_id). Returns None if unlinked."""
        query = (
            select(_users)
            .join(_provider_links, _provider_links.c.user_id == _users.c.id)
            .where((_provider_links.c.provider == provider) & (_provider_links.c.subject == subject_id))
        )
        with _store_errors("find_by_provider_link"), self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
            return self._load(conn, row)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, draft: User) -> User:
        """Insert a user and its provider links in one transaction.

        The store assigns id and created_at; any values on the draft are
        ignored. Raises DuplicateIdentity if the email or any provider link is
        already taken; nothing is written in that case.
        """
        user_id = uuid.uuid4().hex
        created_at = _now_iso()
        with _store_errors("create"), self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=draft.name,
                    email=_normalize_email(draft.email),
                    password_hash=draft.password_hash,
                    is_email_verified=1 if draft.is_email_verified else 0,
                    created_at=created_at,
                )
            )
            for provider, subject in draft.provider_links.items():
                conn.execute(
                    _provider_links.insert().values(
                        user_id=user_id,
                        provider=provider,
                        subject=subject,
                        created_at=created_at,
                    )
                )
        logger.info("Created user %s", user_id)
        return User(
            id=user_id,
            name=draft.name,
            email=_normalize_email(draft.email),
            password_hash=draft.password_hash,
            provider_links=dict(draft.provider_links),
            is_email_verified=draft.is_email_verified,
            created_at=created_at,
        )

    def link_provider(self, user_id: str, provider: str, subject_id: str) -> User | None:
        """Attach a provider identity to an existing user.

        Raises DuplicateIdentity if the (provider, subject_id) pair belongs to
        someone else, the user already has a link for this provider, or
        user_id does not exist (foreign key). Returns the refreshed user, or
        None if it was deleted again before the re-read.
        """
        with _store_errors("link_provider"), self.engine.begin() as conn:
            conn.execute(
                _provider_links.insert().values(
                    user_id=user_id,
                    provider=provider,
                    subject=subject_id,
                    created_at=_now_iso(),
                )
            )
        logger.info("Linked %s identity to user %s", provider, user_id)
        return self.find_by_id(user_id)

    def mark_email_verified(self, user_id: str) -> bool:
        """Set is_email_verified. Returns False if user_id was not found."""
        with _store_errors("mark_email_verified"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_email_verified=1))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Credential store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, conn: Connection, row) -> User | None:
        if row is None:
            return None
        links = conn.execute(
            select(_provider_links.c.provider, _provider_links.c.subject).where(_provider_links.c.user_id == row.id)
        ).fetchall()
        return _row_to_user(row, {link.provider: link.subject for link in links})


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, provider_links: dict[str, str]) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        provider_links=provider_links,
        is_email_verified=bool(row.is_email_verified),
        created_at=row.created_at,
    )
