import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional
from fastapi import FastAPI, Depends, Body, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from batch_ingestor import BatchIngestor
from core.config import Settings, get_settings
from core.db import get_session_factory, init_engine, dispose_engine
from credential_registry import CredentialRegistry
from deployment_store import DeploymentStore
from schemas.deployment import BatchOutcome, DeploymentRead, StatusUpdate, format_validation_error, parse_deployment_id, parse_status
from schemas.registry import RegistryCredentialRead, RegistryCredentialRequest
from utils.exceptions import CustomException, StoreError, ValidationError
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

PUSH_STATUS_CODES = {
    BatchOutcome.ALL_SUCCEEDED: 201,
    BatchOutcome.PARTIAL: 206,
    BatchOutcome.ALL_FAILED: 400,
}


def envelope(success: bool, message: Optional[str] = None, data: Any = None,
             error: Optional[str] = None, status_code: int = 200) -> JSONResponse:
    content = {"success": success}
    if message:
        content["message"] = message
    if data is not None:
        content["data"] = data
    if error:
        content["error"] = error
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Deployment Controller", description="Versioned deployment configuration store", version=APP_VERSION)
    app.state.settings = settings
    # 같은 (domain, app_name) 에 대한 create는 요청 간에 이 lock을 공유
    app.state.key_lock = KeyedLock()

    # 모든 HTTP 요청 로깅 (method, path, status, latency, client ip, user agent)
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - started) * 1000
        client_ip = request.client.host if request.client else "-"
        logger.info(
            f"[http] {request.method} {request.url.path} {response.status_code} "
            f"{latency_ms:.1f}ms ip={client_ip} ua={request.headers.get('user-agent', '-')}"
        )
        return response

    @app.on_event("startup")
    async def on_startup():
        init_engine(settings.database)

    @app.on_event("shutdown")
    async def on_shutdown():
        await dispose_engine()

    # DI: 세션 팩토리를 받아서 store 생성
    def get_deployment_store(session_factory: async_sessionmaker = Depends(get_session_factory)):
        return DeploymentStore.from_settings(session_factory, settings, key_lock=app.state.key_lock)

    def get_batch_ingestor(store: DeploymentStore = Depends(get_deployment_store)):
        return BatchIngestor(store, item_timeout=settings.timeouts.request, batch_timeout=settings.timeouts.push)

    def get_credential_registry(session_factory: async_sessionmaker = Depends(get_session_factory)):
        return CredentialRegistry(session_factory, timeout=settings.timeouts.request)

    # 라우트
    @app.post("/api/v1/push")
    async def push(payload: Any = Body(...), ingestor: BatchIngestor = Depends(get_batch_ingestor)):
        if not isinstance(payload, list):
            raise ValidationError("Invalid request body: expected a JSON array of deployments")
        result = await ingestor.ingest(payload)
        data = {
            "request_id": result.request_id,
            "processed_count": result.processed_count,
            "failed_count": result.failed_count,
            "created_deployments": result.created,
        }
        if result.failed:
            data["failed_deployments"] = result.failed
        return envelope(
            success=result.processed_count > 0,
            message="Deployment push processed",
            data=data,
            status_code=PUSH_STATUS_CODES[result.outcome],
        )

    @app.get("/api/v1/deployments")
    async def list_deployments(store: DeploymentStore = Depends(get_deployment_store)):
        deployments = await store.list_latest()
        return envelope(True, data=[DeploymentRead.model_validate(d) for d in deployments])

    @app.get("/api/v1/deployments/{deployment_id}")
    async def get_deployment(deployment_id: str, store: DeploymentStore = Depends(get_deployment_store)):
        deployment = await store.get_by_id(parse_deployment_id(deployment_id))
        return envelope(True, data=DeploymentRead.model_validate(deployment))

    @app.patch("/api/v1/deployments/{deployment_id}/status")
    async def update_deployment_status(
        deployment_id: str,
        body: StatusUpdate,
        store: DeploymentStore = Depends(get_deployment_store),
    ):
        # id와 status는 store 접근 전에 검증
        deployment_id = parse_deployment_id(deployment_id)
        status = parse_status(body.status)
        deployment = await store.update_status(deployment_id, status)
        return envelope(True, message="Deployment status updated successfully", data=DeploymentRead.model_validate(deployment))

    @app.get("/api/v1/stats")
    async def get_stats(store: DeploymentStore = Depends(get_deployment_store)):
        stats = await store.stats()
        return envelope(True, data=stats)

    @app.post("/api/v1/registry")
    async def store_registry_credential(
        body: RegistryCredentialRequest,
        registry: CredentialRegistry = Depends(get_credential_registry),
    ):
        await registry.store(body.registry, body.username, body.password)
        return envelope(True, message="Registry credential stored successfully", status_code=201)

    @app.get("/api/v1/registry")
    async def get_registry_credential(
        registry_name: Optional[str] = Query(None, alias="registry"),
        registry: CredentialRegistry = Depends(get_credential_registry),
    ):
        if not registry_name:
            raise ValidationError("registry parameter is required")
        credential = await registry.get(registry_name)
        return envelope(True, data=RegistryCredentialRead.model_validate(credential).model_dump(
            include={"registry", "username", "password"}))

    # DB 연결 상태 확인 엔드포인트
    @app.get("/healthz")
    async def health_check(store: DeploymentStore = Depends(get_deployment_store)):
        try:
            await store.ping(timeout=settings.timeouts.health)
        except StoreError as e:
            logger.error(f"[healthz] database health check failed: {e.message}")
            return envelope(False, error="Database connection failed", status_code=503)
        return envelope(True, message="Service is healthy", data={
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "version": APP_VERSION,
        })

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return await custom_exception_handler(request, exc.to_http())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = "Invalid request body: " + format_validation_error(exc)
        return await custom_exception_handler(request, CustomException(
            code=ValidationError.code,
            message=message,
            dev_message=message,
            status_code=400,
        ))

    @app.exception_handler(CustomException)
    async def custom_exception_handler(request: Request, exc: CustomException):
        if exc.status_code >= 500:
            logger.error(f"[{exc.code}] {exc.dev_message} | {request.url}")
        else:
            logger.warning(f"[{exc.code}] {exc.dev_message} | {request.url}")
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict()
        )

    return app
