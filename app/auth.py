"""
Google OAuth 2.0 login, callback, session cookie, and current-user dependency.

- Login redirects to Google with a CSRF state stored in a short-lived cookie.
- Callback validates state, then UserService exchanges the code, creates or
  updates the user and stores the encrypted credential bundle; sets JWT in
  HttpOnly cookie, redirects to frontend (no token in URL).
- /me returns current user when session cookie is valid.
- /profile updates name/department; /logout records the event and clears the cookie.
- /refresh-token forces a Google token refresh for faculty.
- get_current_user dependency reads JWT from cookie and returns an active User;
  require_role builds a dependency that also checks the role.
"""
import logging
import secrets
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from config import (
    FRONTEND_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_REDIRECT_URI,
    GOOGLE_SCOPES,
    JWT_COOKIE_MAX_AGE,
    JWT_COOKIE_NAME,
    OAUTH_STATE_COOKIE_NAME,
    OAUTH_STATE_MAX_AGE,
    SECURE_COOKIES,
)
from database import get_db
from deps import get_token_manager, get_user_service
from errors import AppError, AuthorizationError
from models import Role, User
from security import create_jwt, decode_jwt
from services.audit_service import Origin
from services.token_service import TokenLifecycleManager
from services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")


# Cookie flags: HttpOnly (no JS access), SameSite=Lax (CSRF mitigation), Secure in production is set per-response
def _cookie_kwargs(secure: bool = False) -> dict:
    return {
        "httponly": True,
        "samesite": "lax",
        "secure": secure,
        "path": "/",
    }


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency: read JWT from session cookie, decode it, load User.
    Raises 401 if cookie missing or JWT invalid/expired or user not found,
    403 if the account is deactivated.
    """
    token = request.cookies.get(JWT_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_jwt(token)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid session")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise AuthorizationError("This account has been deactivated")
    return user


def require_role(*roles: Role):
    """Dependency factory: current user must hold one of `roles`."""
    allowed = {r.value for r in roles}

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise AuthorizationError(f"Requires role: {', '.join(sorted(allowed))}")
        return user

    return dependency


class ProfileBody(BaseModel):
    name: str | None = Field(None, max_length=100)
    department: str | None = Field(None, max_length=20)


@router.get("/google/login")
def google_login():
    """
    Redirect to Google OAuth consent. Sets a short-lived cookie with a random
    state value and includes the same state in the redirect URL so the callback
    can verify the request was not forged (CSRF protection).
    """
    state = secrets.token_urlsafe(32)
    query = urlencode(
        {
            "client_id": GOOGLE_CLIENT_ID,
            "redirect_uri": GOOGLE_REDIRECT_URI,
            "response_type": "code",
            "scope": GOOGLE_SCOPES,
            # offline + consent so Google returns a refresh token
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
    )
    redirect = RedirectResponse(url=f"https://accounts.google.com/o/oauth2/v2/auth?{query}")
    redirect.set_cookie(
        OAUTH_STATE_COOKIE_NAME,
        state,
        max_age=OAUTH_STATE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    return redirect


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    users: UserService = Depends(get_user_service),
):
    """
    Handle redirect from Google. Validates state cookie (CSRF), logs the user
    in, sets session cookie, redirects to frontend success page (no JWT in URL).
    Login failures redirect to the frontend error page.
    """
    if error:
        raise HTTPException(status_code=400, detail=f"OAuth error: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    state_cookie = request.cookies.get(OAUTH_STATE_COOKIE_NAME)
    if not state_cookie or not secrets.compare_digest(state, state_cookie):
        raise HTTPException(status_code=400, detail="Invalid or expired state; please try logging in again")

    try:
        user = users.login_with_google(code, Origin.from_request(request))
    except AppError as e:
        logger.warning("Google login failed: %s", e.message)
        redirect = RedirectResponse(url=f"{FRONTEND_URL}/auth/error?message={quote(e.message)}")
        redirect.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
        return redirect

    jwt_token = create_jwt(user.id, user.role)
    redirect = RedirectResponse(url=f"{FRONTEND_URL}/login/success?role={user.role}")
    # Set session cookie so frontend can call /auth/me and other APIs with credentials
    redirect.set_cookie(
        JWT_COOKIE_NAME,
        jwt_token,
        max_age=JWT_COOKIE_MAX_AGE,
        **_cookie_kwargs(secure=SECURE_COOKIES),
    )
    # Clear state cookie
    redirect.delete_cookie(OAUTH_STATE_COOKIE_NAME, path="/")
    return redirect


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    """Return current user profile. Requires valid session cookie."""
    return user.to_public()


@router.put("/profile")
def update_profile(
    body: ProfileBody,
    request: Request,
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    updated = users.update_profile(user, body.name, body.department, Origin.from_request(request))
    return updated.to_public()


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    user: User = Depends(get_current_user),
    users: UserService = Depends(get_user_service),
):
    """
    Record the logout and clear the session cookie. Frontend should redirect
    to login after calling this.
    """
    users.logout(user, Origin.from_request(request))
    response.delete_cookie(JWT_COOKIE_NAME, path="/")
    return {"ok": True}


@router.post("/refresh-token")
def refresh_token(
    user: User = Depends(require_role(Role.FACULTY)),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Force a Google access-token refresh for the current faculty member."""
    bundle = tokens.refresh(user.id)
    return {"ok": True, "expires_at": bundle.expires_at}
