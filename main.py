from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Literal

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware

from civicwatch.api.deps import get_current_active_superuser
from civicwatch.core.config import settings
from civicwatch.core.errors import register_exception_handlers
from civicwatch.core.log import get_logger
from civicwatch.db.init_db import create_initial_data
from civicwatch.db.session import connect_storage, get_storage
from civicwatch.db.storage import StorageAdapter
from civicwatch.routers import admin, analytics, auth, reports, users
from civicwatch.services.export import export_data

logger = get_logger("civicwatch")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.storage = await connect_storage(settings)
    await create_initial_data(app.state.storage)
    logger.info(f"{settings.PROJECT_NAME} started in {app.state.storage.mode} mode")
    yield
    await app.state.storage.disconnect()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="API for CivicWatch - reporting and tracking civic issues",
    version="0.1.0",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth.router, prefix=settings.API_V1_STR, tags=["Authentication"])
app.include_router(reports.router, prefix=settings.API_V1_STR, tags=["Reports"])
app.include_router(users.router, prefix=settings.API_V1_STR, tags=["Users"])
app.include_router(analytics.router, prefix=settings.API_V1_STR, tags=["Analytics"])
app.include_router(admin.router, prefix=settings.API_V1_STR, tags=["Admin"])


@app.get(f"{settings.API_V1_STR}/health", tags=["Health"])
async def health_check(storage: StorageAdapter = Depends(get_storage)):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage": storage.mode,
    }


@app.get(f"{settings.API_V1_STR}/export/{{export_format}}", tags=["Export"])
async def export(
    export_format: Literal["json", "csv"],
    current_user: Dict[str, Any] = Depends(get_current_active_superuser),
    storage: StorageAdapter = Depends(get_storage),
) -> Any:
    """
    Write all users and reports to DATA_DIR/exports. Only accessible to admin users.
    """
    try:
        result = await export_data(storage, export_format, settings.DATA_DIR)
    except Exception as e:
        logger.error(f"Export error: format={export_format}, error={str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to export data",
        )
    return {"success": True, "message": f"Data exported successfully in {export_format} format", **result}


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
