import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from langop_api.config import settings
from langop_api.database import engine
from langop_api.deps import close_redis, get_redis
from langop_api.k8s import init_k8s
from langop_api.quota.errors import QuotaError
from langop_api.quota.locks import LocalOrgLocks, RedisOrgLocks
from langop_api.routes import health, quota
from langop_api.schemas import ErrorResponse

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("langop_api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.cluster = init_k8s(request_timeout=settings.k8s_request_timeout)
    if settings.quota_lock_backend == "local":
        app.state.org_locks = LocalOrgLocks(blocking_timeout=settings.quota_lock_blocking_timeout)
    else:
        app.state.org_locks = RedisOrgLocks(
            await get_redis(),
            timeout=settings.quota_lock_timeout,
            blocking_timeout=settings.quota_lock_blocking_timeout,
        )
    logger.info("Quota locks backed by %s", settings.quota_lock_backend)
    yield
    await close_redis()
    await engine.dispose()


app = FastAPI(title="Langop Dashboard API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QuotaError)
async def quota_error_handler(request: Request, exc: QuotaError) -> JSONResponse:
    body = ErrorResponse(error=exc.message, details=exc.details)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    body = ErrorResponse(error=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "message": err["msg"]}
        for err in exc.errors()
    ]
    body = ErrorResponse(error="Invalid request body", details=details)
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


app.include_router(health.router)
app.include_router(quota.org_router)
app.include_router(quota.admin_router)


def main() -> None:
    import uvicorn

    uvicorn.run("langop_api.main:app", host="0.0.0.0", port=8000, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
