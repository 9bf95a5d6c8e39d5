"""
services/payment_service.py
---------------------------

Redirect pages for the payment gateway's browser callbacks. The gateway
sends the shopper back with query parameters describing the outcome;
each page logs those parameters, shows a fixed message and navigates to
the application root after a delay.

A page is a small component with a ``mount``/``unmount`` lifecycle. The
redirect timer is acquired on mount and released on unmount, so a page
that is left before the delay elapses never navigates. Timer and
navigation are injected (:class:`~branchdesk.core.lifecycle.LoopScheduler`
and any object with ``navigate(path)``).
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from branchdesk.core.lifecycle import Disposable, LoopScheduler
from branchdesk.logging_config import logger
from branchdesk.schemas.payment import PaymentRedirectParams

REDIRECT_DELAY_SECONDS = 5.0

FAILURE_TITLE = "Ödeme Başarısız!"
FAILURE_MESSAGE = "İşleminiz tamamlanamadı. Lütfen tekrar deneyiniz."
SUCCESS_TITLE = "Ödeme Başarılı!"
SUCCESS_MESSAGE = "İşleminiz başarıyla tamamlandı."


def redirect_notice(delay_seconds: float) -> str:
    return f"{delay_seconds:g} saniye içinde ana sayfaya yönlendirileceksiniz..."


@dataclass(frozen=True)
class PageContent:
    title: str
    message: str
    notice: str
    redirect_to: str
    delay_seconds: float


def log_payment_failure(params: PaymentRedirectParams) -> str:
    """Log a failed payment with a UTC timestamp and return the timestamp."""
    timestamp = datetime.now(timezone.utc).isoformat()
    logger.error(json.dumps({
        "event": "payment_failed",
        "merchant_oid": params.merchant_oid,
        "failed_reason_code": params.failed_reason_code,
        "failed_reason_msg": params.failed_reason_msg,
        "payment_id": params.payment_id,
        "timestamp": timestamp,
    }))
    return timestamp


def log_payment_success(params: PaymentRedirectParams) -> str:
    """Log a successful payment with a UTC timestamp and return the timestamp."""
    timestamp = datetime.now(timezone.utc).isoformat()
    logger.info(json.dumps({
        "event": "payment_succeeded",
        "merchant_oid": params.merchant_oid,
        "payment_id": params.payment_id,
        "timestamp": timestamp,
    }))
    return timestamp


class RedirectPage(ABC):
    """Base class: show content, then navigate after ``delay_seconds``."""

    title = ""
    message = ""

    def __init__(self, navigator: Any, scheduler: Optional[Any] = None, *,
                 delay_seconds: float = REDIRECT_DELAY_SECONDS, redirect_to: str = "/") -> None:
        self._navigator = navigator
        self._scheduler = scheduler or LoopScheduler()
        self.delay_seconds = delay_seconds
        self.redirect_to = redirect_to
        self._timer: Optional[Disposable] = None

    def content(self) -> PageContent:
        return PageContent(
            title=self.title,
            message=self.message,
            notice=redirect_notice(self.delay_seconds),
            redirect_to=self.redirect_to,
            delay_seconds=self.delay_seconds,
        )

    @abstractmethod
    def log_params(self, params: PaymentRedirectParams) -> None:
        ...

    def mount(self, query: Union[str, Mapping[str, str]]) -> PageContent:
        """Log the redirect parameters and start the redirect timer."""
        if self.mounted:
            raise RuntimeError("Page is already mounted")
        self.log_params(PaymentRedirectParams.from_query(query))
        self._timer = self._scheduler.call_later(self.delay_seconds, self._redirect)
        return self.content()

    def unmount(self) -> None:
        """Cancel the pending redirect, if any."""
        if self._timer is not None:
            self._timer.dispose()
            self._timer = None

    @property
    def mounted(self) -> bool:
        return self._timer is not None and not self._timer.disposed

    def _redirect(self) -> None:
        if self._timer is None or self._timer.disposed:
            return
        self._timer.dispose()
        logger.info(json.dumps({
            "event": "payment_redirect",
            "page": type(self).__name__,
            "redirect_to": self.redirect_to,
        }))
        self._navigator.navigate(self.redirect_to)


class PaymentFailurePage(RedirectPage):
    title = FAILURE_TITLE
    message = FAILURE_MESSAGE

    def log_params(self, params: PaymentRedirectParams) -> None:
        log_payment_failure(params)


class PaymentSuccessPage(RedirectPage):
    title = SUCCESS_TITLE
    message = SUCCESS_MESSAGE

    def log_params(self, params: PaymentRedirectParams) -> None:
        log_payment_success(params)
