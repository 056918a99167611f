"""
FastAPI application factory.

``create_app`` builds the application with middleware and error handlers.
Routes are added by the startup sequence once the collaborators they need
exist, so a freshly created app only serves ``/metrics``.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from streamhooks.core.config import Settings
from streamhooks.core.database import Database
from streamhooks.middleware.session import DatabaseSessionMiddleware
from streamhooks.observability import setup_observability


def create_app(settings: Settings, database: Database) -> FastAPI:
    """
    Create the web application.

    Args:
        settings: Application settings
        database: Database borrowed by the session middleware

    Returns:
        FastAPI: Application without routes
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Keeps Twitch stream-change webhooks subscribed",
        debug=settings.DEBUG,
    )

    app.add_middleware(
        DatabaseSessionMiddleware,
        database=database,
        secret=settings.SESSION_SECRET,
        cookie_name=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_COOKIE_MAX_AGE,
        https_only=settings.SESSION_COOKIE_SECURE,
    )

    # Added last so it wraps the session middleware
    setup_observability(app)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """
        Handle HTTP exceptions with structured JSON responses.

        Args:
            request: The incoming request
            exc: The HTTP exception

        Returns:
            JSONResponse: Structured error response
        """
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.status_code,
                    "message": exc.detail,
                    "type": "http_exception",
                }
            },
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "code": 422,
                    "message": "Validation error",
                    "type": "validation_error",
                    "details": exc.errors(),
                }
            },
        )

    return app
