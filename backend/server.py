"""
Keystone CRM - API Backend
Revenue Intelligence: scoring, forecast, scenarios

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from config import CORS_ORIGINS, client, get_db

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("keystone")

# Créer l'app
app = FastAPI(
    title="Keystone CRM",
    description="CRM Revenue Intelligence",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ERREURS ====================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"data": None, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"data": None, "error": "invalid_request"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"[API] {request.method} {request.url.path} failed")
    return JSONResponse(status_code=500, content={"data": None, "error": str(exc) or "internal_error"})


# ==================== IMPORT DES ROUTES ====================

from routes import auth, revenue_intelligence

app.include_router(auth.router, prefix="/api")
app.include_router(revenue_intelligence.router, prefix="/api")

# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Keystone CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("Keystone CRM démarré")

    db = get_db()
    if db is None:
        logger.warning("MONGO_URL non configuré: les endpoints répondront db_unavailable")
        return

    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.settings.create_index("key", unique=True)
    await db.deals.create_index("forecastedCloseDate")
    await db.deals.create_index("closeDate")
    await db.deals.create_index([("ownerId", 1), ("stage", 1)])
    await db.deal_history.create_index("dealId")
    await db.revenue_intelligence_snapshots.create_index("createdAt")
    logger.info("Index MongoDB créés")

    from scheduler_service import task_scheduler
    task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    from scheduler_service import task_scheduler
    task_scheduler.stop()
    if client is not None:
        client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
