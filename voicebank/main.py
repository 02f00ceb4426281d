"""
FastAPI Application Entry Point
===============================
Main application with lifecycle management, middleware, and route mounting.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voicebank.config import get_settings
from voicebank.core.exceptions import VoiceBankException
from voicebank.core.session import FlowSessionManager
from voicebank.api.routes import accounts, command, flows, health, security, voice
from voicebank.db.database import init_db, close_db
from voicebank.db.repositories import LedgerRepository, ProfileRepository
from voicebank.services.banking import BankingService
from voicebank.services.biometrics import VoiceBiometricService
from voicebank.services.biometrics.eagle import create_verifier
from voicebank.services.llm import IntentClassifier
from voicebank.services.security import SecurityProfileService
from voicebank.logging.agent_logger import AgentLogger

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info("Starting Voice Banking Backend")
    logger.info("=" * 60)

    # ==================
    # STARTUP
    # ==================

    Path(settings.AGENT_LOG_PATH).parent.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing agent logger...")
    app.state.agent_logger = AgentLogger(str(settings.AGENT_LOG_PATH))
    await app.state.agent_logger.log_system_event("Application starting", {
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT
    })

    logger.info("Initializing database...")
    await init_db()

    logger.info("Initializing ledger and security profiles...")
    app.state.ledger = LedgerRepository()
    app.state.profiles = ProfileRepository()
    app.state.banking = BankingService(app.state.ledger)
    app.state.security = SecurityProfileService(app.state.profiles)

    logger.info("Initializing voice biometrics...")
    app.state.biometrics = VoiceBiometricService(
        app.state.security, create_verifier(settings.PICOVOICE_ACCESS_KEY)
    )

    logger.info("Initializing intent classifier...")
    app.state.intent_classifier = IntentClassifier()
    await app.state.intent_classifier.initialize()

    logger.info("Starting flow session manager...")
    app.state.flow_manager = FlowSessionManager()
    await app.state.flow_manager.start()

    logger.info("=" * 60)
    logger.info("Voice Banking Backend Ready!")
    logger.info(f"Server: http://{settings.HOST}:{settings.PORT}")
    logger.info(f"Docs: http://{settings.HOST}:{settings.PORT}/docs")
    logger.info("=" * 60)

    await app.state.agent_logger.log_system_event("Application started successfully", {
        "host": settings.HOST,
        "port": settings.PORT,
        "voice_biometrics": app.state.biometrics.available,
        "intent_classifier": "groq" if app.state.intent_classifier.is_initialized else "keywords"
    })

    yield  # Application runs here

    # ==================
    # SHUTDOWN
    # ==================

    logger.info("Shutting down Voice Banking Backend...")

    await app.state.agent_logger.log_system_event("Application shutting down", {})

    if hasattr(app.state, 'flow_manager'):
        await app.state.flow_manager.stop()
    if hasattr(app.state, 'intent_classifier'):
        await app.state.intent_classifier.cleanup()
    if hasattr(app.state, 'biometrics'):
        app.state.biometrics.cleanup()
    if hasattr(app.state, 'agent_logger'):
        await app.state.agent_logger.close()

    await close_db()

    logger.info("Shutdown complete.")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Voice Banking Assistant

    Spoken send-money and bill-payment flows for users with limited literacy.

    ### Features:
    - 🎤 Hindi and English voice prompts with live transcripts
    - 🔐 Voice biometric or spoken PIN authentication
    - 💸 Transfers to contacts or new recipients, bill payments
    - 🧾 Idempotent ledger submission

    ### Flow:
    ```
    Target → Amount → Confirm → Authenticate → Execute
    ```
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ==================
# MIDDLEWARE
# ==================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_timing_header(request: Request, call_next):
    """Add request timing information to response headers."""
    start_time = datetime.now()
    response = await call_next(request)
    process_time = (datetime.now() - start_time).total_seconds() * 1000
    response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
    return response


# ==================
# EXCEPTION HANDLERS
# ==================

@app.exception_handler(VoiceBankException)
async def voice_bank_exception_handler(request: Request, exc: VoiceBankException):
    """Handle application exceptions."""
    logger.error(f"VoiceBankException: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": str(exc) if settings.DEBUG else None
        }
    )


# ==================
# ROUTES
# ==================

app.include_router(health.router, tags=["Health"])
app.include_router(flows.router, prefix="/api/v1/flows", tags=["Flows"])
app.include_router(security.router, prefix="/api/v1/security", tags=["Security"])
app.include_router(accounts.router, prefix="/api/v1/accounts", tags=["Accounts"])
app.include_router(command.router, prefix="/api/v1/command", tags=["Command"])
app.include_router(voice.router, prefix="/api/v1/voice", tags=["Voice"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }


if settings.DEBUG:
    @app.get("/debug/config")
    async def debug_config():
        """Debug endpoint to view configuration (DEBUG mode only)."""
        return {
            "environment": settings.ENVIRONMENT,
            "supported_languages": settings.SUPPORTED_LANGUAGES,
            "llm_model": settings.LLM_MODEL_ID,
            "voice_threshold": settings.VOICE_VERIFICATION_THRESHOLD,
            "max_auth_attempts": settings.MAX_AUTH_ATTEMPTS
        }
