"""Starlette middleware that rejects requests denied by an :class:`IpFilter`."""

from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import config
from .filter import IpFilter, RequestMeta

logger = logging.getLogger(__name__)


def request_meta(request: Request) -> RequestMeta:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return RequestMeta(
        client_host=request.client.host if request.client else None,
        headers=request.headers,
        url=url,
        request=request,
    )


class IpFilterMiddleware(BaseHTTPMiddleware):
    """Reject requests whose resolved client address the filter denies.

    Without an explicit *ip_filter* the filter is built from the
    ``IPFILTER_*`` settings.
    """

    def __init__(self, app, ip_filter: IpFilter | None = None, **kwargs):
        super().__init__(app, **kwargs)
        self._enabled = ip_filter is not None or config.settings.enabled
        self._filter = ip_filter
        if self._filter is None and self._enabled:
            self._filter = config.build_filter(config.settings)
        if self._enabled:
            logger.info("IP filter middleware enabled in %s mode", self._filter.mode.value)
        else:
            logger.info("IP filter middleware disabled")

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        decision = self._filter.decide(request_meta(request))
        if not decision.admit:
            error = decision.error()
            return JSONResponse(
                {"detail": error.message},
                status_code=error.status_code,
            )

        return await call_next(request)
