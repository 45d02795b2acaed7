"""FastAPI dependencies for the gateway.

Learn: The Gateway and BatchCoalescer are built once per app (see
main.create_app) and hung on app.state. Route handlers pull them in with
Depends(), which also lets tests swap either one through
app.dependency_overrides.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from ownergate.gateway.batch import BatchCoalescer
from ownergate.gateway.errors import AuthorizationFailed, GatewayError, public_message
from ownergate.gateway.facade import AuthResult, Gateway


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_coalescer(request: Request) -> BatchCoalescer:
    return request.app.state.coalescer


def auth_error_response(result: AuthResult) -> JSONResponse:
    """Render a denied AuthResult as a coarse code and a generic message."""
    return JSONResponse(
        status_code=result.http_status,
        content={
            "error": result.error,
            "message": public_message(result.reason_code),
        },
        headers=result.headers(),
    )


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Exception handler registered on the app for every GatewayError."""
    if isinstance(exc, AuthorizationFailed):
        return auth_error_response(exc.result)
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": exc.reason_code.public_error,
            "message": str(exc),
        },
    )
