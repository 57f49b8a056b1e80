"""HTTP endpoints of the login, callback, logout and status flow."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from storefront_auth.callback import CallbackParams
from storefront_auth.dependencies import current_session, get_storefront_auth
from storefront_auth.errors import (
    KNOWN_ERROR_CODES,
    ConfigurationError,
    UnsafeRedirectError,
    user_message,
)
from storefront_auth.models import SessionResult
from storefront_auth.service import StorefrontAuth

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("storefront_auth.security")


def _error_detail(error_code: str) -> dict:
    return {"error": error_code, "error_description": user_message(error_code)}


def _client_host(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def build_router() -> APIRouter:
    router = APIRouter(prefix="/auth", tags=["auth"])

    @router.get("/login")
    async def login(
        request: Request,
        return_to: Optional[str] = Query(default=None, alias="returnTo"),
        error: Optional[str] = Query(default=None),
        auth: StorefrontAuth = Depends(get_storefront_auth),
    ):
        """Start a login, or report why the previous attempt failed."""
        if error:
            # Landing here from a failed callback; starting over would loop
            code = error if error in KNOWN_ERROR_CODES else "authorization_failed"
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_error_detail(code))

        store = auth.session_store(request)
        try:
            location = await auth.authorization.build(store, return_to=return_to or None)
        except UnsafeRedirectError as e:
            security_logger.warning(f"Rejected login from {_client_host(request) or 'unknown'}: {e}")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_error_detail(e.error_code))
        except ConfigurationError as e:
            logger.error(f"Cannot start login: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=_error_detail(e.error_code)
            )

        return store.commit(RedirectResponse(location, status_code=status.HTTP_302_FOUND))

    @router.get("/callback")
    async def callback(
        request: Request,
        code: Optional[str] = Query(default=None),
        state: Optional[str] = Query(default=None),
        error: Optional[str] = Query(default=None),
        error_description: Optional[str] = Query(default=None),
        auth: StorefrontAuth = Depends(get_storefront_auth),
    ):
        store = auth.session_store(request)
        params = CallbackParams(code=code, state=state, error=error, error_description=error_description)
        location = await auth.callback.handle(params, store, client_host=_client_host(request))
        return store.commit(RedirectResponse(location, status_code=status.HTTP_302_FOUND))

    @router.api_route("/logout", methods=["GET", "POST"])
    async def logout(
        request: Request,
        return_to: Optional[str] = Query(default=None, alias="returnTo"),
        auth: StorefrontAuth = Depends(get_storefront_auth),
    ):
        store = auth.session_store(request)
        location = await auth.logout.handle(store, return_to=return_to)
        # 303 turns a POST into a GET at the provider
        status_code = status.HTTP_303_SEE_OTHER if request.method == "POST" else status.HTTP_302_FOUND
        return store.commit(RedirectResponse(location, status_code=status_code))

    @router.get("/status")
    async def session_status(response: Response, session: SessionResult = Depends(current_session)):
        """Report whether the browser is signed in, for client-side scripts."""
        response.headers["Cache-Control"] = "no-store"
        return session.to_public_dict()

    return router
