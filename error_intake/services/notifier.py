import logging
from typing import Dict, List, Tuple

from error_intake.clients.email_client import EmailClient
from error_intake.models.tracked_error import CalculatedPriority, TrackedError
from error_intake.templating import render

logger = logging.getLogger(__name__)

# (цвет шапки письма, метка в теме)
PRIORITY_STYLES: Dict[CalculatedPriority, Tuple[str, str]] = {
    CalculatedPriority.URGENTE: ("#dc3545", "URGENTE"),
    CalculatedPriority.ALTA: ("#ffc107", "ALTA"),
}


class HighPriorityNotifier:
    """
    Отправляет письмо администратору об ошибках высокого приоритета.

    Решение принимается только по рассчитанному приоритету записи
    (``alta`` или ``urgente``); исходная серьёзность роли не играет.
    """

    def __init__(self, email_client: EmailClient, admin_email: str) -> None:
        self.email_client = email_client
        self.admin_email = admin_email

    async def notify(self, record: TrackedError, reasoning: List[str] | None = None) -> bool:
        """
        Отправляет уведомление, если приоритет записи высокий.

        :param record: запись об ошибке после расчёта приоритета.
        :param reasoning: пояснения расчёта для тела письма.
        :return: ``True``, если письмо ушло; ошибки отправки только логируются.
        """
        priority = record.calculated_priority
        if not priority.is_high:
            return False

        try:
            if not await self.email_client.is_configured():
                logger.warning("Почтовый сервис не настроен, уведомление об ошибке %s пропущено", record.id)
                return False

            color, label = PRIORITY_STYLES[priority]
            context = {"record": record, "reasoning": reasoning or [], "label": label, "color": color}
            await self.email_client.send_email(
                to=self.admin_email,
                subject=f"[{label}] Error del Sistema: {record.error_type}",
                html=render("high_priority_email.html", **context),
                text=render("high_priority_email.txt", **context),
            )
            logger.info("Отправлено уведомление %s об ошибке %s", label, record.id)
            return True
        except Exception:
            logger.exception("Не удалось отправить уведомление об ошибке %s", record.id)
            return False
