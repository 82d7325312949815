"""
PlanPocket API Application Factory
"""

import logging
from typing import Optional

import uvicorn

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import PlanPocketSystem, RateLimiter, get_system
from .users import auth_router, user_router
from .transactions import router as transactions_router
from .loans import router as loans_router
from .summary import router as summary_router
from .. import __version__
from ..config import get_config
from ..exceptions import AuthenticationError, ConcurrentModificationError, NotFoundError


logger = logging.getLogger("planpocket.api")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
            messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
        return _error(400, "; ".join(messages) or "Invalid request")

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, str(exc))

    @app.exception_handler(AuthenticationError)
    async def unauthorized(request: Request, exc: AuthenticationError):
        return _error(401, str(exc))

    @app.exception_handler(ConcurrentModificationError)
    async def conflict(request: Request, exc: ConcurrentModificationError):
        return _error(409, str(exc))

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError):
        return _error(400, str(exc))


def create_app(system: Optional[PlanPocketSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built system to serve; defaults to one built from config
    """
    config = system.config if system else get_config()

    app = FastAPI(
        title="PlanPocket API",
        description="Personal finance tracking with loan amortization and installment accounting",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    if system is not None:
        app.dependency_overrides[get_system] = lambda: system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if config.enable_rate_limiting:
        app.middleware("http")(RateLimiter(requests_per_minute=config.rate_limit_per_minute))

    _register_exception_handlers(app)

    # Include routers
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(user_router, prefix="/api/user", tags=["User"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])
    app.include_router(loans_router, prefix="/api/loans", tags=["Loans"])
    app.include_router(summary_router, prefix="/api/summary", tags=["Summary"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "planpocket_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "PlanPocket API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/api/auth",
                "user": "/api/user",
                "transactions": "/api/transactions",
                "loans": "/api/loans",
                "summary": "/api/summary",
            }
        }

    logger.info("PlanPocket API configured")
    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "planpocket.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )


# Create the app instance for uvicorn
app = create_app()
