#!/usr/bin/env python3
"""
HTTP surface for stored articles (aiohttp.web).

Routes:
    GET /articles                   -> stored articles joined with their channel
    PUT /articles/{link}/{status}   -> move an article to a read status
"""

from asyncio import Event
from urllib.parse import unquote

from aiohttp import web

from articles import list_articles, update_article_status
from config import config, get_logger
from errors import NotFoundError, UnknownStatusError
from models import DatabaseQueue

logger = get_logger("server")

DB_KEY = web.AppKey("db", DatabaseQueue)

ERROR_STATUS = {
    NotFoundError: 404,
    UnknownStatusError: 400,
}


async def get_articles(request: web.Request) -> web.Response:
    articles = await list_articles(request.app[DB_KEY])
    return web.json_response(articles)


async def put_article_status(request: web.Request) -> web.Response:
    link = unquote(request.match_info['link'])
    status_name = request.match_info['status']
    envelope, error = await update_article_status(request.app[DB_KEY], link, status_name)
    if error is not None:
        logger.warning(f"Status update rejected for {link}: {error}")
        return web.json_response(envelope, status=ERROR_STATUS.get(type(error), 400))
    return web.json_response(envelope)


def create_app(db: DatabaseQueue) -> web.Application:
    """Build the web application around an already started DatabaseQueue."""
    app = web.Application()
    app[DB_KEY] = db
    app.router.add_get('/articles', get_articles)
    # Links contain slashes; the status is always the last path segment
    app.router.add_put('/articles/{link:.+}/{status}', put_article_status)
    return app


async def serve(db: DatabaseQueue, host: str = None, port: int = None) -> None:
    """Serve the application until cancelled."""
    host = host or config.SERVER_HOST
    port = port or config.SERVER_PORT
    runner = web.AppRunner(create_app(db))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Serving articles on http://{host}:{port}")
    try:
        await Event().wait()
    finally:
        await runner.cleanup()
