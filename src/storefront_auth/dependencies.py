"""FastAPI dependencies exposing the session to route handlers.

Handlers get a :class:`SessionResult` or a :class:`CustomerIdentity`,
never tokens::

    @app.get("/account")
    async def account(customer: CustomerIdentity = Depends(require_customer)):
        return {"email": customer.email}

Cookie changes made while resolving the session (a refresh, a cleared
session) are written to the injected ``Response``. FastAPI only merges that
response into the result when the handler returns plain data; handlers
returning their own ``Response`` must call
``auth.session_store(request).commit(response)`` themselves.
"""

from fastapi import Depends, HTTPException, Request, Response, status

from storefront_auth.errors import user_message
from storefront_auth.models import CustomerIdentity, SessionResult
from storefront_auth.service import StorefrontAuth


def get_storefront_auth(request: Request) -> StorefrontAuth:
    auth = getattr(request.app.state, "storefront_auth", None)
    if auth is None:
        raise RuntimeError("StorefrontAuth is not installed on this application; use create_app()")
    return auth


async def current_session(
    request: Request,
    response: Response,
    auth: StorefrontAuth = Depends(get_storefront_auth),
) -> SessionResult:
    """Resolve the session of the current request."""
    session = await auth.resolver.resolve(request)
    auth.session_store(request).commit(response)
    return session


async def require_customer(session: SessionResult = Depends(current_session)) -> CustomerIdentity:
    """Return the signed-in customer, or reject the request with 401."""
    if not session.logged_in or session.customer is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "login_required",
                "error_description": user_message("login_required"),
            },
        )
    return session.customer
