"""
Repository: persistence layer for users, sessions, forms and responses.

Uses ``psycopg`` (v3) for PostgreSQL access. Question lists, answers and
user profiles are stored as JSONB and mapped back into Pydantic models on
read.

Key Design Decisions:
    - **Stored rules load leniently**: question rows are parsed with the
      permissive ``ConditionalRuleSet``/``Condition`` models, and rule data
      that does not fit them at all is kept as raw JSON, so forms whose rule
      data drifted from the current schema still load and render.
    - **Questions are stored without unset fields**: a condition saved
      without a ``value`` reloads without one.
    - **Users upsert on Airtable identity**: logging in again with the same
      Airtable account refreshes tokens and profile instead of creating a
      duplicate user.
    - **Sessions are opaque**: a random token mapped to a user with an
      expiry; expired sessions are treated as absent.
"""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any

import psycopg
from psycopg.rows import dict_row

from airforms.models import (
    Form,
    FormResponse,
    Question,
    ResponseStatus,
    Session,
    User,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Repository Interface
# ---------------------------------------------------------------------------


class Repository(ABC):
    """Abstract base for Airforms data access."""

    # Users ---------------------------------------------------------------

    @abstractmethod
    def upsert_user(
        self,
        airtable_user_id: str,
        profile: dict[str, Any],
        access_token: str,
        refresh_token: str,
    ) -> User:
        """Create or update the user identified by ``airtable_user_id``.

        Sets ``last_login_at`` to now and returns the stored user.
        """
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def update_user_tokens(
        self, user_id: str, access_token: str, refresh_token: str
    ) -> None:
        """Persist a refreshed OAuth token pair."""
        ...

    # Sessions ------------------------------------------------------------

    @abstractmethod
    def create_session(self, user_id: str, ttl: timedelta) -> Session: ...

    @abstractmethod
    def get_session_user(self, token: str) -> User | None:
        """Return the user of an unexpired session, or None."""
        ...

    @abstractmethod
    def delete_session(self, token: str) -> None: ...

    # Forms ---------------------------------------------------------------

    @abstractmethod
    def create_form(
        self,
        owner_user_id: str,
        airtable_base_id: str,
        airtable_table_id: str,
        title: str,
        questions: list[Question],
    ) -> Form: ...

    @abstractmethod
    def get_form(self, form_id: str) -> Form | None: ...

    @abstractmethod
    def list_forms(self, owner_user_id: str) -> list[Form]:
        """List the owner's forms, newest first."""
        ...

    # Responses -----------------------------------------------------------

    @abstractmethod
    def create_response(
        self,
        form_id: str,
        airtable_record_id: str,
        answers: dict[str, Any],
    ) -> FormResponse: ...

    @abstractmethod
    def list_responses(self, form_id: str) -> list[FormResponse]:
        """List a form's responses, newest first."""
        ...

    @abstractmethod
    def get_response_by_record(
        self, airtable_record_id: str
    ) -> FormResponse | None: ...

    @abstractmethod
    def update_response(self, response: FormResponse) -> None:
        """Persist ``answers``, ``status`` and ``updated_at`` of a response."""
        ...


# ---------------------------------------------------------------------------
# SQL Constants
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    airtable_user_id TEXT NOT NULL UNIQUE,
    profile JSONB NOT NULL DEFAULT '{}',
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    last_login_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS sessions (
    token TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users (id) ON DELETE CASCADE,
    expires_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS forms (
    id TEXT PRIMARY KEY,
    owner_user_id TEXT NOT NULL REFERENCES users (id),
    airtable_base_id TEXT NOT NULL,
    airtable_table_id TEXT NOT NULL,
    title TEXT NOT NULL,
    questions JSONB NOT NULL DEFAULT '[]',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_forms_owner ON forms (owner_user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS responses (
    id TEXT PRIMARY KEY,
    form_id TEXT NOT NULL REFERENCES forms (id),
    airtable_record_id TEXT NOT NULL,
    answers JSONB NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'active',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS idx_responses_form ON responses (form_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_responses_record ON responses (airtable_record_id);
"""

_USER_COLUMNS = """\
    id,
    airtable_user_id,
    profile,
    access_token,
    refresh_token,
    last_login_at,
    created_at,
    updated_at"""

_UPSERT_USER_SQL = f"""\
INSERT INTO users (
    id,
    airtable_user_id,
    profile,
    access_token,
    refresh_token,
    last_login_at
) VALUES (%s, %s, %s, %s, %s, %s)
ON CONFLICT (airtable_user_id) DO UPDATE SET
    profile = EXCLUDED.profile,
    access_token = EXCLUDED.access_token,
    refresh_token = EXCLUDED.refresh_token,
    last_login_at = EXCLUDED.last_login_at,
    updated_at = now()
RETURNING
{_USER_COLUMNS}
"""

_GET_USER_SQL = f"""\
SELECT
{_USER_COLUMNS}
FROM users
WHERE id = %s
"""

_UPDATE_USER_TOKENS_SQL = """\
UPDATE users
SET access_token = %s,
    refresh_token = %s,
    updated_at = now()
WHERE id = %s
"""

_INSERT_SESSION_SQL = """\
INSERT INTO sessions (token, user_id, expires_at) VALUES (%s, %s, %s)
"""

_GET_SESSION_USER_SQL = """\
SELECT
    u.id,
    u.airtable_user_id,
    u.profile,
    u.access_token,
    u.refresh_token,
    u.last_login_at,
    u.created_at,
    u.updated_at
FROM sessions s
JOIN users u ON u.id = s.user_id
WHERE s.token = %s
  AND s.expires_at > %s
"""

_DELETE_SESSION_SQL = "DELETE FROM sessions WHERE token = %s"

_FORM_COLUMNS = """\
    id,
    owner_user_id,
    airtable_base_id,
    airtable_table_id,
    title,
    questions,
    created_at,
    updated_at"""

_INSERT_FORM_SQL = f"""\
INSERT INTO forms (
    id,
    owner_user_id,
    airtable_base_id,
    airtable_table_id,
    title,
    questions
) VALUES (%s, %s, %s, %s, %s, %s)
RETURNING
{_FORM_COLUMNS}
"""

_GET_FORM_SQL = f"""\
SELECT
{_FORM_COLUMNS}
FROM forms
WHERE id = %s
"""

_LIST_FORMS_SQL = f"""\
SELECT
{_FORM_COLUMNS}
FROM forms
WHERE owner_user_id = %s
ORDER BY created_at DESC
"""

_RESPONSE_COLUMNS = """\
    id,
    form_id,
    airtable_record_id,
    answers,
    status,
    created_at,
    updated_at"""

_INSERT_RESPONSE_SQL = f"""\
INSERT INTO responses (
    id,
    form_id,
    airtable_record_id,
    answers,
    status,
    created_at
) VALUES (%s, %s, %s, %s, %s, %s)
RETURNING
{_RESPONSE_COLUMNS}
"""

_LIST_RESPONSES_SQL = f"""\
SELECT
{_RESPONSE_COLUMNS}
FROM responses
WHERE form_id = %s
ORDER BY created_at DESC
"""

_GET_RESPONSE_BY_RECORD_SQL = f"""\
SELECT
{_RESPONSE_COLUMNS}
FROM responses
WHERE airtable_record_id = %s
ORDER BY created_at DESC
LIMIT 1
"""

_UPDATE_RESPONSE_SQL = """\
UPDATE responses
SET answers = %s,
    status = %s,
    updated_at = %s
WHERE id = %s
"""


# ---------------------------------------------------------------------------
# Row -> Model Mapping Helpers
# ---------------------------------------------------------------------------


def _load_json(raw: Any, default: Any) -> Any:
    """JSONB columns arrive as Python objects, or as strings from some drivers."""
    if raw is None:
        return default
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _row_to_user(row: dict) -> User:
    return User(
        id=row["id"],
        airtable_user_id=row["airtable_user_id"],
        profile=_load_json(row.get("profile"), {}),
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        last_login_at=row.get("last_login_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_form(row: dict) -> Form:
    """Convert a database row to a Form.

    ``questions`` is JSONB in the stored camelCase shape.
    """
    questions_raw = _load_json(row.get("questions"), [])
    return Form(
        id=row["id"],
        owner_user_id=row["owner_user_id"],
        airtable_base_id=row["airtable_base_id"],
        airtable_table_id=row["airtable_table_id"],
        title=row["title"],
        questions=[Question.model_validate(q) for q in questions_raw],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _row_to_response(row: dict) -> FormResponse:
    return FormResponse(
        id=row["id"],
        form_id=row["form_id"],
        airtable_record_id=row["airtable_record_id"],
        answers=_load_json(row.get("answers"), {}),
        status=ResponseStatus(row.get("status") or ResponseStatus.ACTIVE.value),
        created_at=row["created_at"],
        updated_at=row.get("updated_at"),
    )


def _questions_to_json(questions: list[Question]) -> str:
    return json.dumps(
        [
            q.model_dump(mode="json", by_alias=True, exclude_unset=True)
            for q in questions
        ]
    )


# ---------------------------------------------------------------------------
# Concrete Implementation: PostgresRepository
# ---------------------------------------------------------------------------


class PostgresRepository(Repository):
    """PostgreSQL-backed Repository using psycopg v3.

    Opens one connection per operation from a connection string (DSN).
    Pooling, if any, is handled externally (e.g. PgBouncer).

    Parameters
    ----------
    conninfo : str
        PostgreSQL connection string (DSN).
    """

    def __init__(self, conninfo: str) -> None:
        self._conninfo = conninfo

    def _connect(self) -> psycopg.Connection:
        """Create a new database connection.

        Uses ``row_factory=dict_row`` for convenient dict-based row access.
        The connection context manager commits on success and rolls back
        on error.
        """
        return psycopg.connect(
            self._conninfo,
            row_factory=dict_row,
            autocommit=False,
        )

    def _fetch_one(self, sql: str, params: tuple) -> dict | None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()

    def _fetch_all(self, sql: str, params: tuple) -> list[dict]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def _execute(self, sql: str, params: tuple) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)

    def create_schema(self) -> None:
        """Create tables and indexes if they do not exist (local development)."""
        with self._connect() as conn:
            conn.execute(SCHEMA_SQL)
        logger.info("Database schema ensured")

    # Users ---------------------------------------------------------------

    def upsert_user(self, airtable_user_id, profile, access_token, refresh_token):
        row = self._fetch_one(
            _UPSERT_USER_SQL,
            (
                f"usr_{uuid.uuid4().hex}",
                airtable_user_id,
                json.dumps(profile),
                access_token,
                refresh_token,
                datetime.now(timezone.utc),
            ),
        )
        user = _row_to_user(row)
        logger.info(
            "Upserted user id=%s airtable_user_id=%s", user.id, airtable_user_id
        )
        return user

    def get_user(self, user_id):
        row = self._fetch_one(_GET_USER_SQL, (user_id,))
        return _row_to_user(row) if row else None

    def update_user_tokens(self, user_id, access_token, refresh_token):
        self._execute(_UPDATE_USER_TOKENS_SQL, (access_token, refresh_token, user_id))
        logger.info("Stored refreshed Airtable tokens for user=%s", user_id)

    # Sessions ------------------------------------------------------------

    def create_session(self, user_id, ttl):
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            expires_at=datetime.now(timezone.utc) + ttl,
        )
        self._execute(
            _INSERT_SESSION_SQL, (session.token, session.user_id, session.expires_at)
        )
        return session

    def get_session_user(self, token):
        row = self._fetch_one(
            _GET_SESSION_USER_SQL, (token, datetime.now(timezone.utc))
        )
        return _row_to_user(row) if row else None

    def delete_session(self, token):
        self._execute(_DELETE_SESSION_SQL, (token,))

    # Forms ---------------------------------------------------------------

    def create_form(
        self, owner_user_id, airtable_base_id, airtable_table_id, title, questions
    ):
        row = self._fetch_one(
            _INSERT_FORM_SQL,
            (
                f"form_{uuid.uuid4().hex}",
                owner_user_id,
                airtable_base_id,
                airtable_table_id,
                title,
                _questions_to_json(questions),
            ),
        )
        form = _row_to_form(row)
        logger.info(
            "Created form id=%s owner=%s questions=%d",
            form.id,
            owner_user_id,
            len(questions),
        )
        return form

    def get_form(self, form_id):
        row = self._fetch_one(_GET_FORM_SQL, (form_id,))
        return _row_to_form(row) if row else None

    def list_forms(self, owner_user_id):
        rows = self._fetch_all(_LIST_FORMS_SQL, (owner_user_id,))
        return [_row_to_form(row) for row in rows]

    # Responses -----------------------------------------------------------

    def create_response(self, form_id, airtable_record_id, answers):
        row = self._fetch_one(
            _INSERT_RESPONSE_SQL,
            (
                f"resp_{uuid.uuid4().hex}",
                form_id,
                airtable_record_id,
                json.dumps(answers),
                ResponseStatus.ACTIVE.value,
                datetime.now(timezone.utc),
            ),
        )
        return _row_to_response(row)

    def list_responses(self, form_id):
        rows = self._fetch_all(_LIST_RESPONSES_SQL, (form_id,))
        return [_row_to_response(row) for row in rows]

    def get_response_by_record(self, airtable_record_id):
        row = self._fetch_one(_GET_RESPONSE_BY_RECORD_SQL, (airtable_record_id,))
        return _row_to_response(row) if row else None

    def update_response(self, response):
        self._execute(
            _UPDATE_RESPONSE_SQL,
            (
                json.dumps(response.answers),
                response.status.value,
                response.updated_at,
                response.id,
            ),
        )
