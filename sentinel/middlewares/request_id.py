"""Middleware Starlette pour ajouter et propager un identifiant de requête.

L'identifiant est repris de l'en-tête entrant s'il existe, exposé dans `request.state`
(enveloppe d'erreur), lié au contexte structlog et renvoyé dans la réponse.
"""

from collections.abc import Callable
from uuid import uuid4

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Ajoute un identifiant unique à chaque requête HTTP pour corréler les logs."""

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next: Callable):
        request_id = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers[self.header_name] = request_id
        return response
