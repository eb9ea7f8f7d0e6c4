"""
PostForge - FastAPI Backend
Main application entry point with health check and API routing.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import billing, credits, generate, health
from services.errors import AccountNotFound, CreditLedgerError, InsufficientBalance


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting PostForge API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if not settings.OPENAI_API_KEY:
        print("⚠️ OPENAI_API_KEY is not set; generation endpoints will return 503.")
    if settings.BILLING_ENABLED and not settings.STRIPE_WEBHOOK_SECRET:
        print("⚠️ STRIPE_WEBHOOK_SECRET is not set; webhooks will be rejected.")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="PostForge API",
    description="Credit-metered AI social post generation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CreditLedgerError)
async def credit_ledger_error_handler(request: Request, exc: CreditLedgerError):
    if isinstance(exc, AccountNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    if isinstance(exc, InsufficientBalance):
        return JSONResponse(
            status_code=402,
            content={"detail": str(exc), "remaining_credits": exc.balance, "required": exc.required},
        )
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(generate.router, prefix="/ai", tags=["Generation"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "PostForge API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT)
