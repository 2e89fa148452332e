from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from dotenv import load_dotenv
from reelstream.routes import auth, movies, users, admin, media
from reelstream.middleware.security import SecurityHeadersMiddleware
from reelstream.services.background_jobs import background_jobs
import os
import logging

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# ============================================
# Application Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: start housekeeping jobs
    Shutdown: stop them gracefully
    """
    logger.info(f"ReelStream API starting (environment: {ENVIRONMENT}, {len(allowed_origins)} CORS origins)")

    try:
        background_jobs.start()
    except Exception as e:
        logger.error(f"Failed to start background jobs: {str(e)}")

    yield

    logger.info("ReelStream API shutting down")
    try:
        background_jobs.shutdown()
    except Exception as e:
        logger.error(f"Error stopping background jobs: {str(e)}")


app = FastAPI(
    title="ReelStream API",
    description="Movie catalog and streaming backend",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ============================================
# Security Configuration
# ============================================

# CORS - Whitelist allowed origins
allowed_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
]
if production_url := os.getenv("FRONTEND_URL"):
    allowed_origins.append(production_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware, hsts=ENVIRONMENT == "production")

# Trusted Hosts - Production only
if ENVIRONMENT == "production":
    if trusted_hosts := [h.strip() for h in os.getenv("TRUSTED_HOSTS", "").split(",") if h.strip()]:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)


# ============================================
# Exception Handlers - CORS headers on every error response
# ============================================

def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin in allowed_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "*"
        response.headers["Access-Control-Expose-Headers"] = "*"
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Errors raised by services; 401s must stay readable by the browser"""
    response = JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )
    return _with_cors(request, response)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}", exc_info=True)
    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
    return _with_cors(request, response)


# ============================================
# Routes
# ============================================

@app.get("/", tags=["Health"])
async def root():
    """Basic health check"""
    return {
        "message": "ReelStream API",
        "version": API_VERSION,
        "status": "healthy",
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check for monitoring"""
    return {
        "status": "healthy",
        "api_version": API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "background_jobs": background_jobs.scheduler.running,
        "security": {
            "login_throttling": "enabled",
            "signed_media_urls": "enabled",
            "security_headers": "enabled"
        }
    }


app.include_router(auth.router)
app.include_router(movies.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(media.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
