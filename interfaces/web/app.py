from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response
from starlette.routing import Route
from starlette.templating import Jinja2Templates

from application.audit import record_threat
from application.auth_gate import (
    DEFAULT_BAN_NOTICE,
    AuthDecision,
    ClientInfo,
    View,
    authorize,
    redirect_for,
)
from application.services import (
    LoginStatus,
    authenticate,
    register_account,
    reissue_link_code,
)
from config import Settings
from domain.errors import StoreUnavailable
from domain.models import ThreatLogEntry
from domain.repositories import AccountRepository, PasswordHasher, ThreatLogRepository

logger = logging.getLogger(__name__)

SESSION_KEY = "account_id"

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))


def _client_info(request: Request) -> ClientInfo:
    return ClientInfo(
        ip=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent"),
        endpoint=request.url.path,
    )


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def create_web_app(
    account_repo: AccountRepository,
    hasher: PasswordHasher,
    settings: Settings,
    threat_log: Optional[ThreatLogRepository] = None,
) -> Starlette:
    """
    Build the PulseHub web app.

    Every protected view goes through `authorize`, which re-reads the
    account on each request so a ban applied by the Discord listener takes
    effect on the very next page load.
    """

    def render_ban(request: Request, reason: str) -> Response:
        return templates.TemplateResponse(
            request, "ban.html", {"ban_reason": reason}, status_code=403
        )

    async def guard(
        request: Request, view: View
    ) -> Tuple[Optional[Response], AuthDecision]:
        decision = await run_in_threadpool(
            authorize,
            request.session.get(SESSION_KEY),
            account_repo,
            threat_log,
            _client_info(request),
        )
        if decision.destroy_session:
            request.session.clear()
            return render_ban(request, decision.ban_notice), decision
        target = redirect_for(decision, view)
        if target:
            return _redirect(target), decision
        return None, decision

    async def signup_page(request: Request):
        return templates.TemplateResponse(request, "signup.html", {})

    async def signup(request: Request):
        form = await request.form()
        username = str(form.get("username") or "")
        email = str(form.get("email") or "")
        password = str(form.get("password") or "")
        if not username or not email or not password:
            return templates.TemplateResponse(
                request,
                "signup.html",
                {"error": "All fields required.", "username": username, "email": email},
                status_code=400,
            )

        result = await run_in_threadpool(
            register_account, username, email, password, account_repo, hasher
        )
        if not result.success:
            return templates.TemplateResponse(
                request,
                "signup.html",
                {"error": result.error_message, "username": username, "email": email},
                status_code=400,
            )

        request.session[SESSION_KEY] = result.account.id
        return _redirect("/link")

    async def login_page(request: Request):
        return templates.TemplateResponse(request, "login.html", {})

    async def login(request: Request):
        form = await request.form()
        identifier = str(form.get("usernameOrEmail") or "")
        password = str(form.get("password") or "")

        result = await run_in_threadpool(
            authenticate, identifier, password, account_repo, hasher
        )
        if result.status is LoginStatus.BANNED:
            client = _client_info(request)
            await run_in_threadpool(
                record_threat,
                threat_log,
                ThreatLogEntry(
                    ip=client.ip,
                    reason="ban_evasion",
                    action_taken="blocked",
                    user_agent=client.user_agent,
                    endpoint=client.endpoint,
                    account_id=result.account.id,
                ),
            )
            return render_ban(request, result.account.ban_reason or DEFAULT_BAN_NOTICE)
        if not result.success:
            status_code = 503 if result.status is LoginStatus.UNAVAILABLE else 401
            return templates.TemplateResponse(
                request,
                "login.html",
                {"error": result.error_message},
                status_code=status_code,
            )

        request.session[SESSION_KEY] = result.account.id
        return _redirect("/home" if result.account.is_linked else "/link")

    async def link_page(request: Request):
        response, decision = await guard(request, View.LINK)
        if response is not None:
            return response
        return templates.TemplateResponse(
            request,
            "link.html",
            {
                "username": decision.account.username,
                "link_code": decision.account.link_code,
                "invite_url": settings.discord_invite_url,
            },
        )

    async def new_link_code(request: Request):
        response, decision = await guard(request, View.LINK)
        if response is not None:
            return response
        result = await run_in_threadpool(reissue_link_code, decision.account.id, account_repo)
        if not result.success:
            logger.warning("Link code re-issue refused: %s", result.error_message)
        return _redirect("/link")

    async def home(request: Request):
        response, decision = await guard(request, View.HOME)
        if response is not None:
            return response
        return templates.TemplateResponse(request, "home.html", {"user": decision.account})

    async def logout(request: Request):
        request.session.clear()
        return _redirect("/")

    async def not_found(request: Request, exc: HTTPException):
        return templates.TemplateResponse(
            request, "404.html", {"message": "Page not found."}, status_code=404
        )

    async def store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error("Store unavailable while serving %s: %s", request.url.path, exc)
        return templates.TemplateResponse(
            request,
            "error.html",
            {"message": "Service temporarily unavailable. Please try again."},
            status_code=503,
        )

    routes = [
        Route("/", signup_page, methods=["GET"]),
        Route("/signup", signup, methods=["POST"]),
        Route("/login", login_page, methods=["GET"]),
        Route("/login", login, methods=["POST"]),
        Route("/link", link_page, methods=["GET"]),
        Route("/link/new-code", new_link_code, methods=["POST"]),
        Route("/home", home, methods=["GET"]),
        Route("/logout", logout, methods=["POST"]),
    ]

    return Starlette(
        routes=routes,
        middleware=[
            Middleware(
                SessionMiddleware,
                secret_key=settings.session_secret,
                max_age=settings.session_max_age,
                same_site="lax",
            )
        ],
        exception_handlers={
            404: not_found,
            StoreUnavailable: store_unavailable,
        },
    )
