"""aiohttp server hosting the protected API surface."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from bastion.api.middleware import (
    create_access_log_middleware,
    create_ban_middleware,
    create_waf_middleware,
)
from bastion.api.responses import create_error_middleware, create_request_id_middleware
from bastion.api.routes.admin import register_admin_routes
from bastion.api.routes.health import handle_health
from bastion.bans.manager import BanManager
from bastion.config import Settings
from bastion.logging import get_logger
from bastion.security.intrusions import IntrusionLog
from bastion.security.scanner import Scanner

log = get_logger("bastion.api.server")


class SecurityAPIServer:
    """HTTP server wiring the admission pipeline in front of the routes.

    Middleware order, outermost first: request id, access log, error
    envelope, ban check, user-agent WAF. Payload scanning runs per route
    through :func:`bastion.api.validation.validate`.
    """

    def __init__(
        self,
        ban_manager: BanManager,
        scanner: Scanner,
        intrusions: IntrusionLog,
        settings: Settings,
    ) -> None:
        self._ban_manager = ban_manager
        self._scanner = scanner
        self._intrusions = intrusions
        self._settings = settings
        self._host = settings.api_host
        self._port = settings.api_port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

        log.info("security_api_initialized", host=self._host, port=self._port)

    def create_app(self) -> web.Application:
        """Create and configure the aiohttp application."""
        middlewares: list[Any] = [
            create_request_id_middleware(),
            create_access_log_middleware(),
            create_error_middleware(),
            create_ban_middleware(
                self._ban_manager,
                self._intrusions,
                trust_forwarded_for=self._settings.trust_forwarded_for,
            ),
            create_waf_middleware(self._scanner, self._ban_manager, self._intrusions),
        ]

        app = web.Application(
            middlewares=middlewares,
            client_max_size=self._settings.api_max_body_bytes,
        )

        # Shared state for handlers and the validation decorator
        app["ban_manager"] = self._ban_manager
        app["scanner"] = self._scanner
        app["intrusions"] = self._intrusions
        app["debug_errors"] = self._settings.is_development

        app.router.add_get("/health", handle_health)

        admin_key = self._settings.admin_api_key
        if admin_key is not None and admin_key.get_secret_value():
            app["admin_api_key"] = admin_key.get_secret_value()
            register_admin_routes(app)
        else:
            log.info("admin_routes_disabled", reason="ADMIN_API_KEY not set")

        self._app = app
        return app

    async def start(self) -> None:
        """Start the server."""
        if self._app is None:
            self.create_app()

        if self._app is None:  # pragma: no cover
            raise RuntimeError("create_app() must be called first")

        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

        log.info("security_api_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        """Stop the server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            log.info("security_api_stopped")
