"""
routes/payment.py
-----------------

Landing pages for the payment gateway's browser redirects. The
parameters are logged on the server; the returned HTML carries a meta
refresh so the browser navigates to the root after the configured delay.
"""

from __future__ import annotations

from html import escape

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from branchdesk.core.config import get_settings
from branchdesk.schemas.payment import PaymentRedirectParams
from branchdesk.services.payment_service import (
    FAILURE_MESSAGE,
    FAILURE_TITLE,
    SUCCESS_MESSAGE,
    SUCCESS_TITLE,
    PageContent,
    log_payment_failure,
    log_payment_success,
    redirect_notice,
)

router = APIRouter(prefix="/payment", tags=["Payment"])

_PAGE = """<!DOCTYPE html>
<html lang="tr">
<head>
<meta charset="utf-8">
<meta http-equiv="refresh" content="{delay};url={target}">
<title>{title}</title>
</head>
<body>
<h1>{title}</h1>
<p>{message}</p>
<p>{notice}</p>
</body>
</html>
"""


def render_page(content: PageContent) -> str:
    return _PAGE.format(
        delay=f"{content.delay_seconds:g}",
        target=escape(content.redirect_to, quote=True),
        title=escape(content.title),
        message=escape(content.message),
        notice=escape(content.notice),
    )


def _content(request: Request, title: str, message: str) -> PageContent:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return PageContent(
        title=title,
        message=message,
        notice=redirect_notice(settings.redirect_delay_seconds),
        redirect_to=settings.redirect_target,
        delay_seconds=settings.redirect_delay_seconds,
    )


@router.get("/fail", response_class=HTMLResponse)
async def payment_fail(request: Request):
    log_payment_failure(PaymentRedirectParams.from_query(request.url.query))
    return HTMLResponse(render_page(_content(request, FAILURE_TITLE, FAILURE_MESSAGE)))


@router.get("/success", response_class=HTMLResponse)
async def payment_success(request: Request):
    log_payment_success(PaymentRedirectParams.from_query(request.url.query))
    return HTMLResponse(render_page(_content(request, SUCCESS_TITLE, SUCCESS_MESSAGE)))
