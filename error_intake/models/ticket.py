from datetime import datetime

from pydantic import BaseModel


class Ticket(BaseModel):
    """Тикет службы поддержки, в том числе созданный автоматически."""

    id: str
    user_id: str
    category: str = "problema_tecnico"
    priority: str = "media"
    title: str
    description: str
    status: str = "abierto"
    auto_created: bool = False
    error_fingerprint: str | None = None
    source_component: str | None = None
    assigned_to: str | None = None
    external_issue_id: str | None = None
    external_issue_key: str | None = None
    created_at: datetime


class User(BaseModel):
    id: str
    name: str
    email: str | None = None
    user_type: str = "cliente"
