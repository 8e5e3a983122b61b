from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from icl_store.core.errors import StoreError
from icl_store.core.logger import setup_logger
from icl_store.core.settings import settings
from icl_store.routers.health import router as health_router
from icl_store.routers.auth import router as auth_router
from icl_store.routers.catalog import router as catalog_router
from icl_store.routers.orders import router as orders_router
from icl_store.routers.coins import router as coins_router
from icl_store.routers.admin import router as admin_router
from icl_store.db import init_db


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "message": exc.message})


def create_app(init_database: bool = True) -> FastAPI:
    logger = setup_logger()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        if init_database:
            await init_db()
        logger.info("%s started", settings.APP_NAME)
        yield

    app = FastAPI(title=f"{settings.APP_NAME} API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreError, store_error_handler)

    app.include_router(health_router)
    app.include_router(auth_router)
    app.include_router(catalog_router)
    app.include_router(orders_router)
    app.include_router(coins_router)
    app.include_router(admin_router)

    return app
