"""
Клиент Jira для зеркалирования автоматических тикетов.

Параметры доступа берутся из настроек (`JIRA_BASE_URL`, `JIRA_EMAIL`,
`JIRA_API_TOKEN`, `JIRA_PROJECT_KEY`). Если хотя бы одного нет, клиент
считается неподключённым и синхронизация просто пропускается. Ошибки
сети и HTTP оборачиваются в `IssueTrackerError`.
"""

import base64
from abc import ABC, abstractmethod
from typing import Any, Dict

import aiohttp

from error_intake.errors import IssueTrackerError
from error_intake.models.ticket import Ticket, User

PRIORITY_MAP: Dict[str, str] = {
    "baja": "Low",
    "media": "Medium",
    "alta": "High",
    "urgente": "Highest",
}

CATEGORY_LABELS: Dict[str, str] = {
    "problema_tecnico": "technical-issue",
    "consulta_servicio": "service-inquiry",
    "queja": "complaint",
    "sugerencia": "suggestion",
    "problema_pago": "payment-issue",
    "otro": "other",
}


class IssueTracker(ABC):
    """Внешний трекер задач, куда дублируются тикеты."""

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def create_issue(self, ticket: Ticket, user: User | None = None) -> Dict[str, str]:
        """Создаёт задачу и возвращает ``{"issue_id": ..., "issue_key": ...}``."""


class JiraClient(IssueTracker):
    """
    Минимальный клиент Jira Cloud REST API v3.

    Атрибуты:
        base_url (str): адрес экземпляра Jira без завершающего слэша.
        project_key (str): ключ проекта, в котором создаются задачи.
        timeout (float): общий таймаут запроса в секундах.
    """

    def __init__(
        self,
        base_url: str = "",
        email: str = "",
        api_token: str = "",
        project_key: str = "",
        timeout: float = 15.0,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.project_key = project_key or ""
        self.timeout = timeout
        self._auth_header = ""
        if email and api_token:
            token = base64.b64encode(f"{email}:{api_token}".encode("utf-8")).decode("ascii")
            self._auth_header = f"Basic {token}"

    @classmethod
    def from_settings(cls, settings) -> "JiraClient":
        return cls(
            base_url=settings.jira_base_url,
            email=settings.jira_email,
            api_token=settings.jira_api_token,
            project_key=settings.jira_project_key,
        )

    def is_configured(self) -> bool:
        return bool(self.base_url and self._auth_header and self.project_key)

    def build_issue_payload(self, ticket: Ticket, user: User | None = None) -> Dict[str, Any]:
        """Формирует тело запроса создания задачи (описание в формате ADF)."""
        description = "\n".join([
            ticket.description,
            "",
            "---",
            "**Detalles del Ticket**",
            f"- ID Local: {ticket.id}",
            f"- Usuario: {user.name if user else 'N/A'} ({(user.email if user else None) or 'N/A'})",
            f"- Categoría: {ticket.category}",
            f"- Prioridad: {ticket.priority}",
        ]).strip()

        labels = [CATEGORY_LABELS.get(ticket.category, "other"), "support-ticket"]
        if ticket.auto_created:
            labels.append("auto-created")

        return {
            "fields": {
                "project": {"key": self.project_key},
                "summary": ticket.title,
                "description": {
                    "type": "doc",
                    "version": 1,
                    "content": [
                        {
                            "type": "paragraph",
                            "content": [{"type": "text", "text": description}],
                        }
                    ],
                },
                "issuetype": {"name": "Task"},
                "priority": {"name": PRIORITY_MAP.get(ticket.priority, "Medium")},
                "labels": labels,
            }
        }

    async def _request(self, endpoint: str, method: str = "GET", body: Dict[str, Any] | None = None) -> Dict[str, Any]:
        if not self.is_configured():
            raise IssueTrackerError("Jira no está configurado")

        url = f"{self.base_url}/rest/api/3{endpoint}"
        headers = {
            "Authorization": self._auth_header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, url, headers=headers, json=body) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise IssueTrackerError(f"Jira API error: {resp.status} - {text[:500]}")
                    if resp.status == 204:
                        return {}
                    return await resp.json()
        except aiohttp.ClientError as e:
            raise IssueTrackerError(f"Сетевая ошибка при обращении к Jira: {e}") from e

    async def create_issue(self, ticket: Ticket, user: User | None = None) -> Dict[str, str]:
        response = await self._request("/issue", "POST", self.build_issue_payload(ticket, user))
        return {"issue_id": str(response.get("id", "")), "issue_key": str(response.get("key", ""))}
