import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cloudadaptor import __version__, errors
from cloudadaptor.api.middleware import AuthMiddleware
from cloudadaptor.api.routes import clusters, tasks
from cloudadaptor.usecase import ClusterUsecase

logger = logging.getLogger("cloudadaptor.api")


def create_app(usecase: ClusterUsecase, api_key: str = "") -> FastAPI:
    """Build the HTTP API around one use-case layer.

    Args:
        usecase: Operations served by the routes
        api_key: Shared key expected in X-API-Key; empty disables the check

    Returns:
        FastAPI application
    """
    app = FastAPI(title="cloudadaptor", version=__version__)
    app.state.usecase = usecase
    if api_key:
        app.add_middleware(AuthMiddleware, token=api_key)
    else:
        logger.warning("CLOUDADAPTOR_API_KEY is not set, API requests are not authenticated")

    @app.exception_handler(errors.BusinessError)
    async def business_error_handler(request: Request, exc: errors.BusinessError):
        return JSONResponse(status_code=exc.status, content={"code": exc.code, "msg": exc.msg})

    @app.exception_handler(LookupError)
    async def not_found_handler(request: Request, exc: LookupError):
        return JSONResponse(status_code=404, content={"code": 404, "msg": str(exc)})

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    app.include_router(clusters.router)
    app.include_router(tasks.router)
    app.include_router(tasks.worker_router)
    return app
