"""Health check endpoint."""

from aiohttp import web

from bastion import __version__
from bastion.api.responses import ResponseKey, send_response


async def handle_health(request: web.Request) -> web.Response:
    """GET /health - no auth required."""
    return send_response(
        request,
        200,
        ResponseKey.DATA_RETRIEVED,
        {"status": "healthy", "version": __version__},
    )
