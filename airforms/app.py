"""
HTTP surface for the Airforms service (FastAPI).

Routes:
    - ``GET  /health``
    - ``GET  /auth/airtable``, ``GET /auth/airtable/callback``,
      ``GET /auth/me``, ``POST /auth/logout``
    - Public: ``GET /forms/{form_id}``, ``POST /forms/{form_id}/preview``,
      ``POST /forms/{form_id}/submit``
    - Authenticated: ``GET /me/bases``, ``GET /me/bases/{base_id}/tables``,
      ``GET /me/bases/{base_id}/tables/{table_id}/fields``,
      ``POST /forms``, ``GET /forms``, ``GET /forms/{form_id}/responses``
    - ``POST /webhooks/airtable``

Services raise domain exceptions; the handlers registered in
``create_app`` turn them into status codes. Collaborators are built once
per app from an explicit ``Settings`` object and kept on ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from airforms.airtable import (
    AirtableError,
    TokenExpiredError,
    is_supported_field_type,
    map_airtable_field_type,
)
from airforms.auth import (
    AuthenticationError,
    OAuthClient,
    OAuthError,
    OAuthNotConfiguredError,
    TokenManager,
    build_authorize_url,
    new_oauth_state,
)
from airforms.config import Settings
from airforms.definitions import FormDefinitionError, parse_questions
from airforms.models import User
from airforms.rendering import render_form
from airforms.repo import PostgresRepository, Repository
from airforms.submission import (
    FormNotFoundError,
    SubmissionService,
    SubmissionValidationError,
)
from airforms.webhooks import (
    SIGNATURE_HEADER,
    WebhookPayloadError,
    WebhookProcessor,
    WebhookSignatureError,
    parse_payload,
    verify_signature,
)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logger = logging.getLogger(__name__)

SESSION_COOKIE = "token"
STATE_COOKIE = "oauth_state"
RESPONSE_PREVIEW_ANSWERS = 3


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Services:
    """Collaborators shared by all requests of one app instance."""

    settings: Settings
    repo: Repository
    tokens: TokenManager
    submissions: SubmissionService
    webhooks: WebhookProcessor

    @classmethod
    def build(
        cls,
        settings: Settings,
        repo: Repository | None = None,
        tokens: TokenManager | None = None,
    ) -> Services:
        if repo is None:
            repo = PostgresRepository(settings.database_url.get_secret_value())
        if tokens is None:
            tokens = TokenManager(
                repo,
                OAuthClient(settings),
                timeout=settings.http_timeout_seconds,
            )
        return cls(
            settings=settings,
            repo=repo,
            tokens=tokens,
            submissions=SubmissionService(repo, tokens),
            webhooks=WebhookProcessor(repo),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer ") :]
    return None


def current_user(
    request: Request, services: Services = Depends(get_services)
) -> User:
    """Resolve the logged-in user from the session cookie or bearer header."""
    token = _session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")
    user = services.repo.get_session_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class AnswersRequest(BaseModel):
    """Body of ``/submit`` and ``/preview``."""

    model_config = {"populate_by_name": True, "alias_generator": to_camel}

    answers: dict[str, Any] = {}
    check_required: bool = False


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


async def _handle_form_not_found(request: Request, exc: FormNotFoundError) -> JSONResponse:
    return _error(404, "Form not found")


async def _handle_submission_invalid(
    request: Request, exc: SubmissionValidationError
) -> JSONResponse:
    return JSONResponse(status_code=400, content={"errors": exc.errors})


async def _handle_definition_invalid(
    request: Request, exc: FormDefinitionError
) -> JSONResponse:
    return _error(400, str(exc))


async def _handle_token_expired(request: Request, exc: TokenExpiredError) -> JSONResponse:
    return _error(401, "Token expired, please refresh")


async def _handle_auth_error(request: Request, exc: AuthenticationError) -> JSONResponse:
    return _error(401, str(exc))


async def _handle_airtable_error(request: Request, exc: AirtableError) -> JSONResponse:
    logger.error("Airtable error on %s %s: %s", request.method, request.url.path, exc)
    return _error(500, "Airtable request failed")


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Application Factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings,
    repo: Repository | None = None,
    tokens: TokenManager | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Parameters
    ----------
    settings : Settings
        Service configuration.
    repo : Repository or None
        Storage backend. Defaults to ``PostgresRepository`` on
        ``settings.database_url``.
    tokens : TokenManager or None
        Airtable token provider. Defaults to one backed by ``repo``.
    """
    app = FastAPI(
        title="Airforms",
        description="Airtable-backed forms with conditional questions.",
        version="1.0.0",
    )
    app.state.services = Services.build(settings, repo=repo, tokens=tokens)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(HTTPException, _handle_http_exception)
    app.add_exception_handler(FormNotFoundError, _handle_form_not_found)
    app.add_exception_handler(SubmissionValidationError, _handle_submission_invalid)
    app.add_exception_handler(FormDefinitionError, _handle_definition_invalid)
    app.add_exception_handler(TokenExpiredError, _handle_token_expired)
    app.add_exception_handler(AuthenticationError, _handle_auth_error)
    app.add_exception_handler(AirtableError, _handle_airtable_error)
    app.add_exception_handler(Exception, _handle_unexpected)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    # -- Auth ---------------------------------------------------------------

    @app.get("/auth/airtable")
    def airtable_login(services: Services = Depends(get_services)):
        """Redirect the browser to Airtable's consent screen."""
        state = new_oauth_state()
        try:
            url = build_authorize_url(services.settings, state)
        except OAuthNotConfiguredError as exc:
            return _error(500, str(exc))
        response = RedirectResponse(url, status_code=302)
        response.set_cookie(
            STATE_COOKIE,
            state,
            httponly=True,
            secure=services.settings.secure_cookies,
            samesite="lax",
            max_age=600,
        )
        return response

    @app.get("/auth/airtable/callback")
    def airtable_callback(
        request: Request,
        code: str | None = None,
        error: str | None = None,
        state: str | None = None,
        services: Services = Depends(get_services),
    ):
        """Complete the OAuth flow and start a session."""
        if error:
            return _error(
                400,
                f"OAuth error: {error}",
                details=(
                    "Please check your Airtable OAuth app configuration. Ensure "
                    "the redirect_uri matches exactly in your Airtable app settings."
                ),
            )
        if not code:
            return _error(400, "Authorization code missing")

        expected_state = request.cookies.get(STATE_COOKIE)
        if expected_state and state != expected_state:
            return _error(400, "OAuth state mismatch")

        try:
            user = services.tokens.complete_login(code)
        except OAuthNotConfiguredError as exc:
            return _error(500, str(exc))
        except OAuthError as exc:
            if exc.is_configuration_error:
                return _error(
                    400,
                    "OAuth configuration error",
                    details=exc.description
                    or "Invalid client_id, client_secret, or redirect_uri.",
                    hint=(
                        "Ensure AIRTABLE_OAUTH_CALLBACK_URL matches exactly what "
                        "you configured in Airtable."
                    ),
                )
            return _error(500, "Authentication failed", details=str(exc))

        ttl = timedelta(days=services.settings.session_ttl_days)
        session = services.repo.create_session(user.id, ttl)
        logger.info("User %s logged in", user.id)

        response = RedirectResponse(
            f"{services.settings.frontend_url}/dashboard", status_code=302
        )
        response.set_cookie(
            SESSION_COOKIE,
            session.token,
            httponly=True,
            secure=services.settings.secure_cookies,
            samesite="lax",
            max_age=int(ttl.total_seconds()),
        )
        response.delete_cookie(STATE_COOKIE)
        return response

    @app.get("/auth/me")
    def me(user: User = Depends(current_user)) -> dict[str, Any]:
        return {"user": user.public_dict()}

    @app.post("/auth/logout")
    def logout(request: Request, services: Services = Depends(get_services)):
        token = _session_token(request)
        if token:
            services.repo.delete_session(token)
        response = JSONResponse(content={"message": "Logged out"})
        response.delete_cookie(SESSION_COOKIE)
        return response

    # -- Airtable metadata --------------------------------------------------

    @app.get("/me/bases")
    def list_bases(
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        return {"bases": services.tokens.client_for(user).list_bases()}

    @app.get("/me/bases/{base_id}/tables")
    def list_tables(
        base_id: str,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        return {"tables": services.tokens.client_for(user).list_tables(base_id)}

    @app.get("/me/bases/{base_id}/tables/{table_id}/fields")
    def list_fields(
        base_id: str,
        table_id: str,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        """List the table's columns that can be placed on a form."""
        fields = services.tokens.client_for(user).list_fields(base_id, table_id)
        supported = [
            {
                "id": f.id,
                "name": f.name,
                "type": f.type,
                "mappedType": map_airtable_field_type(f.type).value,
                "options": f.options or {},
            }
            for f in fields
            if is_supported_field_type(f.type)
        ]
        return {"fields": supported}

    # -- Forms --------------------------------------------------------------

    @app.post("/forms", status_code=201)
    def create_form(
        payload: dict[str, Any],
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        base_id = payload.get("airtableBaseId")
        table_id = payload.get("airtableTableId")
        title = payload.get("title")
        if not base_id or not table_id or not title:
            raise FormDefinitionError("Missing required fields")
        questions = parse_questions(payload.get("questions"))

        form = services.repo.create_form(user.id, base_id, table_id, title, questions)
        return {"form": form.model_dump(mode="json", by_alias=True)}

    @app.get("/forms")
    def list_forms(
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        forms = services.repo.list_forms(user.id)
        return {
            "forms": [
                f.model_dump(mode="json", by_alias=True, exclude={"questions"})
                for f in forms
            ]
        }

    @app.get("/forms/{form_id}")
    def get_form(
        form_id: str, services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        form = services.submissions.load_form(form_id)
        return {"form": form.model_dump(mode="json", by_alias=True)}

    @app.post("/forms/{form_id}/preview")
    def preview_form(
        form_id: str,
        body: AnswersRequest,
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        """Return the visible questions and pruned answers for ``answers``."""
        form = services.submissions.load_form(form_id)
        rendered = render_form(form, body.answers, check_required=body.check_required)
        return rendered.model_dump(mode="json", by_alias=True)

    @app.post("/forms/{form_id}/submit", status_code=201)
    def submit_form(
        form_id: str,
        body: AnswersRequest,
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        response = services.submissions.submit(form_id, body.answers)
        return {"response": response.model_dump(mode="json", by_alias=True)}

    @app.get("/forms/{form_id}/responses")
    def list_responses(
        form_id: str,
        user: User = Depends(current_user),
        services: Services = Depends(get_services),
    ) -> dict[str, Any]:
        form = services.submissions.load_form(form_id)
        if form.owner_user_id != user.id:
            raise FormNotFoundError(f"Form not found: {form_id}")

        previews = []
        for r in services.repo.list_responses(form.id):
            preview_keys = list(r.answers)[:RESPONSE_PREVIEW_ANSWERS]
            previews.append(
                {
                    "id": r.id,
                    "airtableRecordId": r.airtable_record_id,
                    "createdAt": r.created_at.isoformat(),
                    "status": r.status.value,
                    "previewAnswers": {k: r.answers[k] for k in preview_keys},
                }
            )
        return {"responses": previews}

    # -- Webhooks -----------------------------------------------------------

    @app.post("/webhooks/airtable")
    async def airtable_webhook(
        request: Request, services: Services = Depends(get_services)
    ):
        body = await request.body()
        secret = services.settings.airtable_webhook_secret.get_secret_value()
        try:
            verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER))
        except WebhookSignatureError as exc:
            logger.warning("Rejected webhook: %s", exc)
            return _error(401, str(exc))

        try:
            payload = parse_payload(body)
        except WebhookPayloadError as exc:
            return _error(400, str(exc))

        await run_in_threadpool(services.webhooks.process, payload)
        return {"received": True}
