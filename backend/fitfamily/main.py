"""FitFamily MCP Server - Entry point.

Runs the MCP server with HTTP transport.
Uses Starlette with the MCP HTTP app for maximum compatibility.
"""

import logging
import os

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route

from .core.errors import FitFamilyError, StoreError
from .shell.mcp_server import current_user_id, family_roster, get_auth_client, mcp


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:5173"


# ==================== Route Handlers ====================


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "healthy", "service": "fitfamily-mcp"})


async def family(request: Request) -> JSONResponse:
    """The fixed family roster, for the login screen."""
    return JSONResponse({"members": family_roster()})


async def login(request: Request) -> JSONResponse:
    """Log a member in with their PIN (the first login sets it)."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Body must be a JSON object"}, status_code=400)

    user_id = body.get("user_id")
    pin = body.get("pin")
    if not user_id or not pin:
        return JSONResponse({"error": "user_id and pin are required"}, status_code=400)

    try:
        get_auth_client().login(user_id, str(pin))
    except StoreError as e:
        return JSONResponse({"error": e.detail}, status_code=503)
    except FitFamilyError as e:
        return JSONResponse({"error": e.detail}, status_code=401)

    return JSONResponse({
        "user_id": user_id,
        "token": f"{user_id}:{pin}",
        "message": "Logged in. Send the token as 'Authorization: Bearer <token>'.",
    })


# ==================== Auth Middleware ====================


class AuthMiddleware(BaseHTTPMiddleware):
    """Authenticate MCP requests using the member token in Authorization header."""

    async def dispatch(self, request: Request, call_next):
        # Skip auth for non-MCP routes
        if not request.url.path.startswith("/mcp"):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")

        if auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ")
            try:
                user_id = get_auth_client().validate_token(token)
            except FitFamilyError as e:
                logger.error("Token validation failed: %s", e.detail)
                user_id = None

            if user_id is not None:
                # Set user context for this request
                current_user_id.set(user_id)
                logger.debug("Authenticated user: %s", user_id)

        return await call_next(request)


# ==================== Create ASGI App ====================


def create_app() -> Starlette:
    """Create the Starlette application with MCP at root.

    The MCP streamable_http_app() handles /mcp/ internally when mounted at root.
    We use its lifespan context to ensure proper initialization.
    """
    mcp_app = mcp.streamable_http_app()

    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route("/family", family, methods=["GET"]),
        Route("/auth/login", login, methods=["POST"]),
        # Mount MCP app at root - it handles /mcp/ path internally
        Mount("/", app=mcp_app),
    ]

    origins = os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")

    app = Starlette(
        routes=routes,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=[o.strip() for o in origins if o.strip()],
                allow_methods=["GET", "POST", "OPTIONS"],
                allow_headers=["*"],
            ),
            Middleware(AuthMiddleware),
        ],
        lifespan=mcp_app.router.lifespan_context,
    )

    return app


# Create app at module level for deployment
app = create_app()


def main() -> None:
    """Run the server."""
    port = int(os.environ.get("PORT", 8080))
    host = os.environ.get("HOST", "0.0.0.0")

    logger.info("Starting FitFamily MCP server on %s:%d", host, port)

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
