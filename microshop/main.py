"""
FastAPI application factory for microshop

One code base serves the Users service, the Products service, or both,
depending on SERVICE_NAME.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from microshop import __version__, config
from microshop.lifespan import lifespan
from microshop.routers import auth, products, users

logger = logging.getLogger(__name__)

SERVICES = {
    "users": [auth.router, users.router],
    "products": [products.router],
}
SERVICES["all"] = SERVICES["users"] + SERVICES["products"]


def _validation_message(error: dict) -> str:
    message = error.get("msg", "Invalid request")
    # pydantic prefixes messages raised from validators
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return message


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"success": False, "message": str(exc.detail), "errors": None}
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]),
            "message": _validation_message(error)
        }
        for error in exc.errors()
    ]
    message = errors[0]["message"] if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": message, "code": "VALIDATION_ERROR", "errors": errors}
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error", "code": "INTERNAL_ERROR", "errors": None}
    )


def create_app(service_name: str = None) -> FastAPI:
    service_name = (service_name or config.SERVICE_NAME).lower()
    if service_name not in SERVICES:
        raise ValueError(f"Unknown service '{service_name}', expected one of: {', '.join(sorted(SERVICES))}")

    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    titles = {"all": "Microshop API", "users": "Microshop Users API", "products": "Microshop Products API"}
    app = FastAPI(title=titles[service_name], version=__version__, lifespan=lifespan)
    app.state.service_name = service_name

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in SERVICES[service_name]:
        app.include_router(router)

    logger.info(f"Mounted {service_name} service routes")
    return app


app = create_app()
