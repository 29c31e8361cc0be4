"""
Почтовый клиент на базе HTTP API Resend.

Если ключ `RESEND_API_KEY` не задан, клиент считается неподключённым:
`is_configured()` возвращает ``False``, и уведомления пропускаются без
ошибки. Сбои отправки оборачиваются в `EmailDeliveryError`.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

import aiohttp

from error_intake.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailClient(ABC):
    """Минимальный контракт почтового сервиса, нужный движку."""

    @abstractmethod
    async def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def send_email(self, to: str | List[str], subject: str, html: str, text: str) -> None:
        ...


class ResendEmailClient(EmailClient):
    def __init__(self, api_key: str = "", from_email: str = "noreply@example.com", timeout: float = 15.0) -> None:
        self.api_key = api_key or ""
        self.from_email = from_email
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "ResendEmailClient":
        return cls(api_key=settings.resend_api_key, from_email=settings.resend_from_email)

    async def is_configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, to: str | List[str], subject: str, html: str, text: str) -> None:
        """
        Отправляет письмо.

        :raises EmailDeliveryError: если клиент не настроен, сервис вернул
            ошибку или запрос не дошёл.
        """
        if not self.api_key:
            raise EmailDeliveryError("Resend no está configurado")

        payload = {
            "from": self.from_email,
            "to": to if isinstance(to, list) else [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(RESEND_API_URL, json=payload, headers=headers) as resp:
                    if resp.status >= 400:
                        body = await resp.text()
                        raise EmailDeliveryError(f"Resend API error: {resp.status} - {body[:500]}")
                    data = await resp.json()
                    logger.info("Письмо отправлено: %s", data.get("id"))
        except aiohttp.ClientError as e:
            raise EmailDeliveryError(f"Сетевая ошибка при отправке письма: {e}") from e
