"""
LeadSync Core - Kommo / Facebook Conversions API / N8N integration backend
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from leadsync.core.config import settings
from leadsync.core.logging import configure_logging
from leadsync.middleware.request_logging import RequestLoggingMiddleware
from leadsync.api.v1 import auth, kommo, facebook, n8n, dashboard

configure_logging()

app = FastAPI(
    title="LeadSync Core API",
    description="Lead attribution and conversion delivery for Kommo, Facebook and N8N",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are a 400 with the offending fields listed"""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", []) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"message": "Validation error: " + "; ".join(problems), "errors": problems},
    )


# API routes
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(kommo.router, prefix="/api/kommo", tags=["kommo"])
app.include_router(facebook.router, prefix="/api/facebook", tags=["facebook"])
app.include_router(n8n.router, prefix="/api/n8n", tags=["n8n"])
app.include_router(n8n.callback_router, prefix="/api/n8n", tags=["n8n"])
app.include_router(dashboard.router, prefix="/api", tags=["dashboard"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": settings.APP_NAME}


@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }
