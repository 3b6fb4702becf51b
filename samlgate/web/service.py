"""Gateway services.

A :class:`Service` owns a Flask blueprint mounted at
``<server path>/<service name>``. Its routes do no work themselves: each
one dispatches an endpoint to an execution unit through the
:class:`~samlgate.dispatch.bridge.DispatchBridge` and shapes the unit's
reply into an HTTP response with a callback.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from enum import Enum
from typing import Any

from flask import Blueprint, Response, request
from werkzeug.wrappers import Response as WerkzeugResponse

from samlgate.core.config import GatewayConfig
from samlgate.core.errors import GatewayError
from samlgate.dispatch.bridge import DispatchBridge, RequestDescriptor

logger = logging.getLogger(__name__)

ENV_API_KEY = "SAMLGATE_API_KEY"
API_KEY_HEADER = "x-api-key"

ReplyCallback = Callable[[Any], WerkzeugResponse]


class Service:
    """A named group of routes served by one kind of execution unit.

    Args:
        name: Service name, also the URL segment.
        title: Human readable title, prefixed to every plain-text reply.
        bridge: Dispatch bridge for the service's execution unit.
        config: Gateway configuration snapshot handed to every unit.
        auth: Require the ``x-api-key`` header to match ``SAMLGATE_API_KEY``.
    """

    def __init__(
        self,
        name: str,
        title: str,
        bridge: DispatchBridge,
        config: GatewayConfig,
        auth: bool = False,
    ) -> None:
        self.name = name
        self.title = title
        self.bridge = bridge
        self.config = config
        self.auth = auth

        self.blueprint = Blueprint(
            name.lower(),
            __name__,
            url_prefix=f"{config.server.base_path}/{name.lower()}",
        )
        if auth:
            self.blueprint.before_request(self._check_api_key)
        self.blueprint.add_url_rule("/", "health", self._health)

    @property
    def debug(self) -> bool:
        return self.config.debug

    def _health(self) -> Response:
        """Service health check, answered without an execution unit."""
        return Response(f"{self.title}: the service is active.", mimetype="text/plain")

    def _check_api_key(self) -> Response | None:
        expected = os.environ.get(ENV_API_KEY)
        if not expected or request.headers.get(API_KEY_HEADER) != expected:
            return self.raise_http_error("Forbidden: Invalid Middleware API Key", 403)
        return None

    def route(
        self,
        rule: str,
        endpoint: str | Enum,
        callback: ReplyCallback,
        methods: tuple[str, ...] = ("GET",),
    ) -> None:
        """Register a route that dispatches ``endpoint``.

        Raises:
            UnknownEndpoint: If the unit does not serve ``endpoint``.
        """
        resolved = self.bridge.check(endpoint)
        view_name = str(resolved.value).replace("-", "_")
        self.blueprint.add_url_rule(
            rule,
            view_name,
            self.request_handler(resolved, callback),
            methods=list(methods),
        )

    def request_handler(self, endpoint: Enum, callback: ReplyCallback) -> Callable[[], Any]:
        """Build the async view for an endpoint."""
        service = self

        async def handler() -> WerkzeugResponse:
            descriptor = RequestDescriptor(
                settings=service.config,
                service_name=service.name,
                debug=service.debug,
                headers=dict(request.headers),
                body=request.form.to_dict(),
                query=request.args.to_dict(),
            )
            try:
                value = await service.bridge.dispatch(endpoint, descriptor)
            except GatewayError as e:
                return service.raise_http_error(e)
            return callback(value)

        handler.__name__ = f"{self.name.lower()}_{endpoint.value}"
        return handler

    def raise_http_error(self, error: GatewayError | str, status: int | None = None) -> Response:
        """Plain-text error response prefixed with the service title.

        Gateway errors expose their real message only in debug mode.
        """
        if isinstance(error, GatewayError):
            message = error.public_message(self.debug)
            status = status or error.status_code
            logger.error(f"{self.title}: {type(error).__name__}: {error.message}")
        else:
            message = error
            status = status or 500
            logger.error(f"{self.title}: {message}")
        return Response(f"{self.title}: {message}", status=status, mimetype="text/plain")
