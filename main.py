from fastapi import FastAPI, Request, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging
import structlog
import time
from contextlib import asynccontextmanager

from models import OperationFailure, OperationRequest, ErrorResponse, HealthResponse
from services import LedgerService, get_ledger_service
from repositories import get_account_repository
from config import Settings, get_settings

# Sentinel body returned for failed operations and unknown accounts
NOT_FOUND_BODY = 0

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


def event_rate_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Ledger API", version=settings.app_version)
    yield
    # Shutdown
    logger.info("Shutting down Ledger API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="In-memory ledger offering deposit, withdraw and transfer operations",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response

# Dependency injection
def get_service(
    account_repo=Depends(get_account_repository),
    app_settings: Settings = Depends(get_settings)
) -> LedgerService:
    return get_ledger_service(
        account_repo,
        allow_overdraft=app_settings.allow_overdraft,
        allow_non_positive_amounts=app_settings.allow_non_positive_amounts
    )

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get ledger statistics"
)
async def health_check(account_repo=Depends(get_account_repository)):
    accounts_count = await account_repo.get_accounts_count()
    return HealthResponse(status="healthy", accounts_count=accounts_count)

# Reset endpoint
@app.api_route(
    "/reset",
    methods=["GET", "POST"],
    summary="Reset Ledger",
    description="Remove every account from the ledger",
    response_class=PlainTextResponse
)
async def reset_ledger(service: LedgerService = Depends(get_service)):
    await service.reset()
    return PlainTextResponse("OK", status_code=status.HTTP_200_OK)

# Balance endpoint
@app.get(
    "/balance",
    summary="Account Balance",
    responses={
        200: {"description": "Current balance"},
        404: {"description": "Account not found"}
    }
)
async def get_balance(
    account_id: str = Query(..., description="Account identifier"),
    service: LedgerService = Depends(get_service)
):
    balance = await service.get_balance(account_id)
    if balance is None:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=NOT_FOUND_BODY)
    return JSONResponse(status_code=status.HTTP_200_OK, content=balance)

# Main operation endpoint
@app.post(
    "/event",
    status_code=status.HTTP_201_CREATED,
    summary="Apply Operation",
    description="Apply a deposit, withdraw or transfer to the ledger",
    responses={
        201: {"description": "Operation applied"},
        404: {"description": "Operation could not be applied"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"}
    }
)
@limiter.limit(event_rate_limit)
async def post_event(
    request: Request,
    operation: OperationRequest,
    service: LedgerService = Depends(get_service)
):
    result = await service.execute(operation)

    if isinstance(result, OperationFailure):
        logger.warning(
            "Event rejected",
            kind=result.kind.value,
            type=operation.type
        )
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=NOT_FOUND_BODY)

    return JSONResponse(status_code=status.HTTP_201_CREATED, content=result.to_payload())

# Global exception handler
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )

# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
