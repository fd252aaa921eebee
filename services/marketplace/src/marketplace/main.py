from __future__ import annotations

import hmac
import json
import logging
import os
import sqlite3
import tempfile
import time
import uuid
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from fastapi import FastAPI, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from marketplace.accounts import DEFAULT_PASSWORD_ROUNDS, AccountService
from marketplace.errors import (
    ForbiddenError,
    MarketplaceError,
    ServiceUnavailableError,
    UnauthorizedError,
)
from marketplace.lifecycle import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, JobLifecycleService
from marketplace.metrics import MetricsSnapshot, MetricsStore
from marketplace.models import (
    ApplicationDecisionRequest,
    AuditEvent,
    AuthIdentity,
    JobCategory,
    JobCreateRequest,
    JobListResponse,
    JobUpdateRequest,
    JobView,
    LoginRequest,
    LoginResponse,
    ProfileUpdateRequest,
    PublicUserProfile,
    ReviewRequest,
    UserProfile,
    UserRegisterRequest,
)
from marketplace.repository import DEFAULT_SORT, MarketplaceRepository
from marketplace.retry import retry_transient, run_store_call

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "small-jobs-marketplace", "marketplace.sqlite3")
DEFAULT_STORE_TIMEOUT_SECONDS = 5.0
DEFAULT_TOKEN_TTL_DAYS = 7
RETRY_AFTER_SECONDS = 1
LOGGER = logging.getLogger("marketplace.api")
T = TypeVar("T")


def env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


@retry_transient()
def record_audit_event(repository: MarketplaceRepository, **fields: Any) -> int:
    return repository.record_audit_event(**fields)


def create_app(
    *,
    database_path: str | None = None,
    admin_key: str | None = None,
    store_timeout: float | None = None,
    token_ttl_days: int | None = None,
    unique_job_titles: bool | None = None,
    password_rounds: int | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("MARKETPLACE_DB_PATH", DEFAULT_DB_PATH)
    resolved_admin_key = (admin_key or os.getenv("MARKETPLACE_ADMIN_KEY", "")).strip() or None
    resolved_timeout = store_timeout or float(
        os.getenv("MARKETPLACE_STORE_TIMEOUT_SECONDS", DEFAULT_STORE_TIMEOUT_SECONDS)
    )
    resolved_ttl_days = token_ttl_days or int(
        os.getenv("MARKETPLACE_TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS)
    )
    resolved_unique_titles = (
        unique_job_titles
        if unique_job_titles is not None
        else env_flag("MARKETPLACE_UNIQUE_JOB_TITLES", True)
    )
    resolved_rounds = password_rounds or int(
        os.getenv("MARKETPLACE_PASSWORD_ROUNDS", DEFAULT_PASSWORD_ROUNDS)
    )

    repository = MarketplaceRepository(database_path=resolved_path, timeout=resolved_timeout)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.metrics = MetricsStore()
        app.state.accounts = AccountService(
            repository,
            token_ttl_days=resolved_ttl_days,
            password_rounds=resolved_rounds,
        )
        app.state.jobs = JobLifecycleService(repository, unique_titles=resolved_unique_titles)
        app.state.admin_key = resolved_admin_key
        app.state.store_timeout = resolved_timeout
        LOGGER.info(
            json.dumps(
                {
                    "event": "startup",
                    "database_path": str(repository.database_path),
                    "store_timeout_seconds": resolved_timeout,
                    "unique_job_titles": resolved_unique_titles,
                    "audit_read_enabled": resolved_admin_key is not None,
                }
            )
        )
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="Small Jobs Marketplace", version="1.0.0", lifespan=lifespan)

    async def store(request: Request, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await run_store_call(
            func,
            *args,
            timeout=request.app.state.store_timeout,
            **kwargs,
        )

    def begin_audit(request: Request, action: str) -> None:
        request.state.audit_action = action

    async def write_audit_event(
        request: Request,
        *,
        status: str,
        message: str | None = None,
    ) -> int | None:
        try:
            return await store(
                request,
                record_audit_event,
                request.app.state.repository,
                request_id=getattr(request.state, "request_id", None),
                method=request.method,
                path=request.url.path,
                action=request.state.audit_action,
                source_ip=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                actor_id=getattr(request.state, "actor_id", None),
                status=status,
                message=message,
            )
        except ServiceUnavailableError as exc:
            LOGGER.error(
                json.dumps(
                    {
                        "event": "audit_write_failed",
                        "request_id": getattr(request.state, "request_id", None),
                        "action": request.state.audit_action,
                        "status": status,
                        "error": exc.message,
                    }
                )
            )
            return None

    async def audit_ok(request: Request, response: Response, message: str) -> None:
        event_id = await write_audit_event(request, status="ok", message=message)
        if event_id is not None:
            response.headers["x-audit-event-id"] = str(event_id)

    async def require_identity(request: Request, *, action: str | None = None) -> AuthIdentity:
        if action is not None:
            begin_audit(request, action)
        identity = await store(
            request,
            request.app.state.accounts.authenticate,
            request.headers.get("x-api-key"),
            source_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        request.state.actor_id = identity.user_id
        return identity

    def error_body(request: Request, detail: Any, code: str) -> dict[str, Any]:
        return {
            "detail": detail,
            "error": code,
            "request_id": getattr(request.state, "request_id", None),
        }

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        request.app.state.metrics.record_error(exc.code)
        headers: dict[str, str] = {}
        unavailable = isinstance(exc, ServiceUnavailableError)
        if unavailable:
            headers["retry-after"] = str(RETRY_AFTER_SECONDS)
        elif getattr(request.state, "audit_action", None):
            event_id = await write_audit_event(request, status=exc.code, message=exc.message)
            if event_id is not None:
                headers["x-audit-event-id"] = str(event_id)

        log = LOGGER.error if unavailable else LOGGER.warning
        log(
            json.dumps(
                {
                    "event": "request_rejected",
                    "request_id": getattr(request.state, "request_id", None),
                    "method": request.method,
                    "path": request.url.path,
                    "error": exc.code,
                    "detail": exc.message,
                }
            )
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, exc.message, exc.code),
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        request.app.state.metrics.record_error("validation_error")
        return JSONResponse(
            status_code=422,
            content=error_body(request, jsonable_encoder(exc.errors()), "validation_error"),
        )

    def route_key(request: Request) -> str:
        route = request.scope.get("route")
        return getattr(route, "path", request.url.path)

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request.state.request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        started = time.perf_counter()
        failure: Exception | None = None
        try:
            response = await call_next(request)
        except Exception as exc:
            failure = exc
            request.app.state.metrics.record_error("internal_error")
            response = JSONResponse(
                status_code=500,
                content=error_body(request, "Internal Server Error", "internal_error"),
            )

        duration_ms = (time.perf_counter() - started) * 1000
        route = route_key(request)
        request.app.state.metrics.observe(
            method=request.method,
            route=route,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request.state.request_id
        record = {
            "event": "request_complete",
            "request_id": request.state.request_id,
            "method": request.method,
            "route": route,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 3),
            "actor_id": getattr(request.state, "actor_id", None),
        }
        if failure is None:
            LOGGER.info(json.dumps(record))
        else:
            LOGGER.error(json.dumps({**record, "error": repr(failure)}), exc_info=failure)
        return response

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        try:
            database_ok = await store(request, request.app.state.repository.ping)
        except (ServiceUnavailableError, sqlite3.Error):
            database_ok = False
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "ok" if database_ok else "degraded",
                "service": "marketplace",
                "database": "ok" if database_ok else "unavailable",
            },
        )

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    # Accounts

    @app.post("/users", response_model=UserProfile, status_code=201)
    async def register(
        payload: UserRegisterRequest,
        request: Request,
        response: Response,
    ) -> UserProfile:
        begin_audit(request, "user_register")
        profile = await store(request, request.app.state.accounts.register, payload)
        request.state.actor_id = profile.id
        await audit_ok(request, response, f"user_id={profile.id}; role={profile.role}")
        return profile

    @app.post("/auth/login", response_model=LoginResponse)
    async def login(payload: LoginRequest, request: Request, response: Response) -> LoginResponse:
        begin_audit(request, "auth_login")
        result = await store(request, request.app.state.accounts.login, payload)
        request.state.actor_id = result.user.id
        await audit_ok(request, response, f"expires_at={result.expires_at}")
        return result

    @app.post("/auth/logout")
    async def logout(request: Request, response: Response) -> dict[str, bool]:
        identity = await require_identity(request, action="auth_logout")
        revoked = await store(request, request.app.state.accounts.logout, identity)
        await audit_ok(request, response, f"token_id={identity.token_id}")
        return {"logged_out": revoked}

    @app.get("/users/me", response_model=UserProfile)
    async def read_me(request: Request) -> UserProfile:
        identity = await require_identity(request)
        return await store(request, request.app.state.accounts.me, identity.user_id)

    @app.patch("/users/me", response_model=UserProfile)
    async def update_me(
        payload: ProfileUpdateRequest,
        request: Request,
        response: Response,
    ) -> UserProfile:
        identity = await require_identity(request, action="profile_update")
        profile = await store(
            request,
            request.app.state.accounts.update_profile,
            identity.user_id,
            payload,
        )
        await audit_ok(request, response, f"fields={','.join(sorted(payload.changes()))}")
        return profile

    @app.get("/users/{user_id}", response_model=PublicUserProfile)
    async def read_user(user_id: str, request: Request) -> PublicUserProfile:
        return await store(request, request.app.state.accounts.public_profile, user_id)

    @app.post("/users/{user_id}/reviews", response_model=PublicUserProfile)
    async def review_user(
        user_id: str,
        payload: ReviewRequest,
        request: Request,
        response: Response,
    ) -> PublicUserProfile:
        identity = await require_identity(request, action="user_review")
        profile = await store(
            request,
            request.app.state.jobs.submit_user_review,
            identity.user_id,
            user_id,
            payload,
        )
        await audit_ok(request, response, f"user_id={profile.id}; rating={payload.rating}")
        return profile

    # Jobs

    @app.get("/jobs", response_model=JobListResponse)
    async def list_jobs(
        request: Request,
        query: str | None = None,
        category: JobCategory | None = None,
        location: str | None = None,
        sort: str = DEFAULT_SORT,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1),
    ) -> JobListResponse:
        return await store(
            request,
            request.app.state.jobs.list_jobs,
            query=query,
            category=category,
            location=location,
            sort=sort,
            page=page,
            page_size=min(limit, MAX_PAGE_SIZE),
        )

    @app.get("/jobs/{job_id}", response_model=JobView)
    async def read_job(job_id: str, request: Request) -> JobView:
        return await store(request, request.app.state.jobs.read, job_id)

    @app.post("/jobs", response_model=JobView, status_code=201)
    async def create_job(
        payload: JobCreateRequest,
        request: Request,
        response: Response,
    ) -> JobView:
        identity = await require_identity(request, action="job_create")
        job = await store(request, request.app.state.jobs.create, identity.user_id, payload)
        await audit_ok(request, response, f"job_id={job.id}; category={job.category}")
        return job

    @app.patch("/jobs/{job_id}", response_model=JobView)
    async def update_job(
        job_id: str,
        payload: JobUpdateRequest,
        request: Request,
        response: Response,
    ) -> JobView:
        identity = await require_identity(request, action="job_update")
        job = await store(request, request.app.state.jobs.update, identity.user_id, job_id, payload)
        await audit_ok(
            request,
            response,
            f"job_id={job.id}; fields={','.join(sorted(payload.changes()))}",
        )
        return job

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str, request: Request, response: Response) -> dict[str, Any]:
        identity = await require_identity(request, action="job_delete")
        deleted_id = await store(request, request.app.state.jobs.delete, identity.user_id, job_id)
        await audit_ok(request, response, f"job_id={deleted_id}")
        return {"deleted": True, "job_id": deleted_id}

    @app.post("/jobs/{job_id}/apply", response_model=JobView)
    async def apply_to_job(job_id: str, request: Request, response: Response) -> JobView:
        identity = await require_identity(request, action="job_apply")
        job = await store(request, request.app.state.jobs.apply, identity.user_id, job_id)
        await audit_ok(request, response, f"job_id={job.id}")
        return job

    @app.patch("/jobs/{job_id}/applications/{applicant_id}", response_model=JobView)
    async def decide_application(
        job_id: str,
        applicant_id: str,
        payload: ApplicationDecisionRequest,
        request: Request,
        response: Response,
    ) -> JobView:
        identity = await require_identity(request, action="application_decide")
        job = await store(
            request,
            request.app.state.jobs.decide_application,
            identity.user_id,
            job_id,
            applicant_id,
            payload.status,
        )
        await audit_ok(
            request,
            response,
            f"job_id={job.id}; applicant_id={applicant_id}; status={payload.status}",
        )
        return job

    @app.post("/jobs/{job_id}/reviews", response_model=JobView)
    async def review_job(
        job_id: str,
        payload: ReviewRequest,
        request: Request,
        response: Response,
    ) -> JobView:
        identity = await require_identity(request, action="job_review")
        job = await store(
            request,
            request.app.state.jobs.submit_job_review,
            identity.user_id,
            job_id,
            payload,
        )
        await audit_ok(request, response, f"job_id={job.id}; rating={payload.rating}")
        return job

    # Audit trail

    @app.get("/audit-events", response_model=list[AuditEvent])
    async def list_audit_events(
        request: Request,
        response: Response,
        limit: int = Query(default=100, ge=1, le=500),
        action: str | None = None,
        status: str | None = None,
    ) -> list[AuditEvent]:
        begin_audit(request, "audit_events_list")
        configured = request.app.state.admin_key
        if configured is None:
            raise ForbiddenError("Audit trail access is not configured")
        provided = request.headers.get("x-admin-key", "")
        if not provided or not hmac.compare_digest(provided.encode(), configured.encode()):
            raise UnauthorizedError("Invalid admin key")
        events = await store(
            request,
            request.app.state.repository.list_audit_events,
            limit=limit,
            action=action,
            status=status,
        )
        await audit_ok(request, response, f"returned={len(events)}")
        return events

    return app


app = create_app()
