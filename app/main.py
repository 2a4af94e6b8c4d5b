# app/main.py
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1.api import api_router
from app.core.config import settings
from app.core.context import AppContext, build_context
from app.core.logging_config import setup_logging
from app.database import create_tables

def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Сборка приложения; без context он создается из настроек при старте"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if context is None:
            # Инициализация БД
            create_tables()
            app.state.context = build_context()
        try:
            yield
        finally:
            await app.state.context.aclose()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="WooCommerce to Dolibarr ERP synchronization",
        version=settings.VERSION,
        lifespan=lifespan
    )
    if context is not None:
        app.state.context = context

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Подключаем роутеры
    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        return {"message": f"{settings.PROJECT_NAME} v{settings.VERSION}", "status": "ok"}

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "dolisync-api"}

    return app

setup_logging()
app = create_app()
