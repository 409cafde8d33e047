"""Entry point for the policy replicator service."""

import time
import uuid

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from common.logging_config import setup_logging
from common.types import NodeAddress
from replicator import config
from replicator.artifact_cache import ArtifactCache, CacheSweeper
from replicator.auth import TokenProvider, local_basic_auth
from replicator.exceptions import (
    ReplicatorException,
    ValidationError,
    ResolutionError,
    ArtifactNotFoundError,
    VersionIncompatibleError,
    ConflictError,
    NodeUnavailableError,
    RemoteRequestError,
    RemoteJobFailedError,
    RemoteJobTimeoutError,
    TransferError
)
from replicator.node_client import NodeClient
from replicator.node_resolver import NodeResolver
from replicator.orchestrator import ReplicationOrchestrator
from replicator.routes.replication_routes import router as replication_router
from replicator.service_locator import (
    get_orchestrator,
    set_orchestrator,
    get_cache_sweeper,
    set_cache_sweeper
)
from replicator.task_poller import TaskPoller

logger = setup_logging('replicator')

app = FastAPI(
    title="Trusted Policy Replicator",
    description="Replicates security policies between mutually trusted nodes",
    version="1.0.0"
)


def build_orchestrator() -> ReplicationOrchestrator:
    """
    Wire the orchestrator and its collaborators from configuration.
    """
    local_node = NodeAddress(
        host=config.LOCAL_HOST,
        port=config.LOCAL_PORT,
        version=config.LOCAL_VERSION,
        scheme="http",
    )
    local_auth = local_basic_auth(config.LOCAL_USER)

    token_provider = TokenProvider(local_node, local_auth, timeout=config.REQUEST_TIMEOUT)
    node_client = NodeClient(
        token_provider,
        local_auth,
        verify_tls=config.VERIFY_TLS,
        request_timeout=config.REQUEST_TIMEOUT
    )
    resolver = NodeResolver(local_node, local_auth, timeout=config.REQUEST_TIMEOUT)

    cache = ArtifactCache(config.STAGING_DIR)
    cache.ensure_directory()

    return ReplicationOrchestrator(
        node_client=node_client,
        resolver=resolver,
        cache=cache,
        poller=TaskPoller(node_client, poll_interval=config.POLL_INTERVAL),
        chunk_size=config.UPLOAD_CHUNK_SIZE,
        job_timeouts=config.JOB_TIMEOUTS,
        allowed_url_schemes=config.ALLOWED_URL_SCHEMES
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Middleware to log all HTTP requests and responses.
    """
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
    )

    response = await call_next(request)

    duration = time.time() - start_time

    logger.info(
        f"Request completed: {request.method} {request.url.path} "
        f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
    )

    response.headers["X-Request-ID"] = request_id

    return response


@app.on_event("startup")
async def startup_event():
    """
    Build the orchestrator and start the cache sweeper on application startup.
    """
    logger.info("Replicator service starting up...")

    orchestrator = get_orchestrator()
    if orchestrator is None:
        orchestrator = build_orchestrator()
        set_orchestrator(orchestrator)
    logger.info(f"Staging directory: {orchestrator.cache.staging_dir}")

    sweeper = CacheSweeper(
        orchestrator.cache,
        ttl_seconds=config.CACHE_TTL,
        interval_seconds=config.CACHE_SWEEP_INTERVAL
    )
    set_cache_sweeper(sweeper)
    await sweeper.start()
    logger.info("Cache sweeper started")


@app.on_event("shutdown")
async def shutdown_event():
    """
    Stop background work and release HTTP sessions on application shutdown.
    """
    logger.info("Replicator service shutting down...")

    sweeper = get_cache_sweeper()
    if sweeper:
        await sweeper.stop()
        set_cache_sweeper(None)
        logger.info("Cache sweeper stopped")

    orchestrator = get_orchestrator()
    if orchestrator:
        await orchestrator.close()
        await orchestrator.node_client.close()
        await orchestrator.resolver.close()
        set_orchestrator(None)
        logger.info("Orchestrator stopped")


def _error_response(request: Request, exc: Exception, status_code: int, code: str) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    message = f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
    if status_code >= 500:
        logger.error(message)
    else:
        logger.warning(message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code}
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR")


@app.exception_handler(ResolutionError)
async def resolution_error_handler(request: Request, exc: ResolutionError):
    return _error_response(request, exc, status.HTTP_404_NOT_FOUND, "UNTRUSTED_NODE")


@app.exception_handler(ArtifactNotFoundError)
async def artifact_not_found_handler(request: Request, exc: ArtifactNotFoundError):
    return _error_response(request, exc, status.HTTP_404_NOT_FOUND, "POLICY_NOT_FOUND")


@app.exception_handler(VersionIncompatibleError)
async def version_incompatible_handler(request: Request, exc: VersionIncompatibleError):
    return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "VERSION_INCOMPATIBLE")


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return _error_response(request, exc, status.HTTP_409_CONFLICT, "CONFLICT")


@app.exception_handler(NodeUnavailableError)
async def node_unavailable_handler(request: Request, exc: NodeUnavailableError):
    return _error_response(request, exc, status.HTTP_503_SERVICE_UNAVAILABLE, "NODE_UNAVAILABLE")


@app.exception_handler(RemoteRequestError)
async def remote_request_handler(request: Request, exc: RemoteRequestError):
    return _error_response(request, exc, status.HTTP_502_BAD_GATEWAY, "REMOTE_REQUEST_FAILED")


@app.exception_handler(RemoteJobFailedError)
async def remote_job_failed_handler(request: Request, exc: RemoteJobFailedError):
    return _error_response(request, exc, status.HTTP_502_BAD_GATEWAY, "REMOTE_JOB_FAILED")


@app.exception_handler(RemoteJobTimeoutError)
async def remote_job_timeout_handler(request: Request, exc: RemoteJobTimeoutError):
    return _error_response(request, exc, status.HTTP_504_GATEWAY_TIMEOUT, "REMOTE_JOB_TIMEOUT")


@app.exception_handler(TransferError)
async def transfer_error_handler(request: Request, exc: TransferError):
    return _error_response(request, exc, status.HTTP_502_BAD_GATEWAY, "TRANSFER_FAILED")


@app.exception_handler(ReplicatorException)
async def replicator_exception_handler(request: Request, exc: ReplicatorException):
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.error(
        f"Replicator exception: {exc} [request_id={request_id}] path={request.url.path}",
        exc_info=True
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "code": "INTERNAL_ERROR"}
    )


app.include_router(replication_router)


@app.get("/")
async def root():
    """
    Root endpoint for health check.
    """
    return {"message": "Trusted Policy Replicator API", "status": "running"}


@app.get("/health")
async def health_check():
    """
    Health check endpoint.
    Returns 200 if service is alive.
    """
    return {"status": "healthy", "service": "replicator"}


@app.get("/ready")
async def ready_check():
    """
    Readiness check endpoint.
    Verifies the orchestrator is wired and the staging directory is writable.
    """
    orchestrator = get_orchestrator()
    orchestrator_status = "ok" if orchestrator is not None else "not started"

    staging_status = "not started"
    if orchestrator is not None:
        try:
            orchestrator.cache.ensure_directory()
            marker = orchestrator.cache.staging_dir / f".ready-{uuid.uuid4().hex}"
            marker.touch()
            marker.unlink()
            staging_status = "ok"
        except OSError as e:
            staging_status = f"error: {str(e)}"

    ready = orchestrator_status == "ok" and staging_status == "ok"
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "ready": ready,
            "orchestrator": orchestrator_status,
            "staging": staging_status,
            "running_replications": orchestrator.running if orchestrator else 0
        }
    )


def main() -> None:
    """
    Start the FastAPI server with uvicorn.
    """
    uvicorn.run(
        "replicator.main:app",
        host=config.REPLICATOR_HOST,
        port=config.REPLICATOR_PORT
    )


if __name__ == "__main__":
    main()
