"""Response headers for an owner-scoped API.

Learn: Every /api/ response is computed for ONE caller: the body depends
on whose token or session cookie came in. A shared cache keyed on the URL
alone could hand owner A's profile to owner B, so those responses are
marked no-store and declare that they vary on the credentials.

The remaining headers keep browsers from reinterpreting a JSON body
(nosniff) or framing it, and trim the referrer sent to other origins.
HSTS is only meaningful once the request actually arrived over https.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CREDENTIAL_HEADERS = "Authorization, Cookie"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith("/api/"):
            headers["Cache-Control"] = "no-store"
            headers["Vary"] = CREDENTIAL_HEADERS
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
