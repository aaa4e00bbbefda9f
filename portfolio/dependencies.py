from fastapi import Depends, Request, Response

from portfolio.db.couchdb import CouchClient
from portfolio.security import Identity, get_identity, get_settings
from portfolio.services.blog_controller import BlogController
from portfolio.services.sessions import ControllerRegistry
from portfolio.settings import Settings


def get_couch_client(request: Request) -> CouchClient:
    return request.app.state.couch


def get_registry(request: Request) -> ControllerRegistry:
    return request.app.state.registry


def get_session_controller(
    request: Request,
    response: Response,
    registry: ControllerRegistry = Depends(get_registry),
    identity: Identity = Depends(get_identity),
    current_settings: Settings = Depends(get_settings),
) -> BlogController:
    cookie_name = current_settings.SESSION_COOKIE
    current = request.cookies.get(cookie_name)
    session_id, controller = registry.get_or_create(current, identity)
    if session_id != current:
        response.set_cookie(cookie_name, session_id, httponly=True, samesite="lax")
    return controller
