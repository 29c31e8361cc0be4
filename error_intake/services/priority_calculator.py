"""
Расчёт приоритета системной ошибки.

Чистая функция без ввода‑вывода и состояния: из структурированных
признаков ошибки собирается взвешенная оценка 0–100 и одна из четырёх
корзин приоритета. Пояснения (`reasoning`) попадают в описание тикета и
на саму оценку не влияют.
"""

import json
import logging
from typing import Any, Dict, List

from pydantic import BaseModel

from error_intake.models.tracked_error import CalculatedPriority

logger = logging.getLogger(__name__)


class CascadeIndicators(BaseModel):
    has_related_errors: bool = False
    related_error_count: int = 0
    is_root_cause: bool = False


class PriorityFactors(BaseModel):
    error_source: str
    error_type: str
    severity: str
    occurrence_count: int = 1
    route: str | None = None
    metadata: Dict[str, Any] | None = None
    cascade_indicators: CascadeIndicators | None = None


class PriorityBreakdown(BaseModel):
    module_weight: int
    severity_weight: int
    frequency_weight: int
    cascade_weight: int
    pattern_weight: int


class PriorityScore(BaseModel):
    total: int
    breakdown: PriorityBreakdown
    priority: CalculatedPriority
    reasoning: List[str]


MODULE_WEIGHTS: Dict[str, int] = {
    "payment": 100,
    "database": 90,
    "authentication": 85,
    "file_storage": 70,
    "external_api": 65,
    "websocket": 60,
    "email": 50,
    "sms": 50,
    "internal_service": 40,
    "unknown": 30,
}

# Порядок важен: берётся первый совпавший префикс
ROUTE_WEIGHTS: Dict[str, int] = {
    "/api/payment": 100,
    "/api/azul": 100,
    "/api/wallet": 95,
    "/api/auth": 85,
    "/api/servicios": 75,
    "/api/drivers": 65,
    "/api/admin": 60,
    "/api/tickets": 55,
    "/api/chat": 50,
}

SEVERITY_WEIGHTS: Dict[str, int] = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
}

ERROR_TYPE_WEIGHTS: Dict[str, int] = {
    "connection_error": 80,
    "timeout_error": 70,
    "configuration_error": 90,
    "integration_error": 65,
    "system_error": 75,
    "permission_error": 40,
    "validation_error": 20,
    "not_found_error": 15,
    "rate_limit_error": 30,
    "unknown_error": 50,
}

# (порог числа повторов, вес) по убыванию порога
FREQUENCY_STEPS = [(100, 100), (50, 85), (20, 70), (10, 55), (5, 40), (3, 25)]
FREQUENCY_BASE_WEIGHT = 10

CRITICAL_KEYWORDS = [
    "payment",
    "transaction",
    "money",
    "credit",
    "debit",
    "wallet",
    "balance",
    "payout",
    "azul",
    "stripe",
    "authentication",
    "password",
    "token",
    "session",
    "database",
    "connection",
    "pool",
    "crash",
    "fatal",
    "corruption",
    "data loss",
]
KEYWORD_WEIGHT = 15

SCORE_WEIGHTS = {
    "module_weight": 0.30,
    "severity_weight": 0.25,
    "frequency_weight": 0.20,
    "cascade_weight": 0.15,
    "pattern_weight": 0.10,
}

# Критическая ошибка в модуле с весом от 95 (платежи, кошелёк) не опускается ниже «urgente»
CRITICAL_MODULE_MIN_WEIGHT = 95

PRIORITY_THRESHOLDS = [
    (80, CalculatedPriority.URGENTE),
    (60, CalculatedPriority.ALTA),
    (40, CalculatedPriority.MEDIA),
]

SEVERITY_TO_PRIORITY: Dict[str, CalculatedPriority] = {
    "critical": CalculatedPriority.URGENTE,
    "high": CalculatedPriority.ALTA,
    "medium": CalculatedPriority.MEDIA,
    "low": CalculatedPriority.BAJA,
}


def _round_half_up(value: float) -> int:
    return int(value + 0.5)


def _value(item: Any) -> str:
    return getattr(item, "value", item)


class PriorityCalculator:
    """Вычисляет приоритет по модулю, серьёзности, частоте, каскаду и ключевым словам."""

    @staticmethod
    def calculate(factors: PriorityFactors) -> PriorityScore:
        """
        Считает итоговую оценку и корзину приоритета.

        Итог: ``round(module*0.30 + severity*0.25 + frequency*0.20 +
        cascade*0.15 + pattern*0.10)``; корзины: от 80 — ``urgente``, от 60 —
        ``alta``, от 40 — ``media``, иначе ``baja``.
        """
        source = _value(factors.error_source)
        severity = _value(factors.severity)
        reasoning: List[str] = []

        breakdown = PriorityBreakdown(
            module_weight=PriorityCalculator.module_weight(source, factors.route),
            severity_weight=PriorityCalculator.severity_weight(severity, _value(factors.error_type)),
            frequency_weight=PriorityCalculator.frequency_weight(factors.occurrence_count),
            cascade_weight=PriorityCalculator.cascade_weight(factors.cascade_indicators),
            pattern_weight=PriorityCalculator.pattern_weight(factors.metadata, factors.route),
        )

        if breakdown.module_weight >= 80:
            reasoning.append(f"Módulo crítico afectado: {source}")
        if breakdown.severity_weight >= 75:
            reasoning.append(f"Severidad alta del error: {severity}")
        if breakdown.frequency_weight >= 60:
            reasoning.append(f"Alta frecuencia de ocurrencias: {factors.occurrence_count}")
        if breakdown.cascade_weight > 0 and factors.cascade_indicators and factors.cascade_indicators.has_related_errors:
            reasoning.append(f"Error con {factors.cascade_indicators.related_error_count} errores relacionados")
        if breakdown.pattern_weight >= 50:
            reasoning.append("Contiene patrones críticos en metadata")

        weighted = breakdown.model_dump()
        total = _round_half_up(sum(weighted[name] * weight for name, weight in SCORE_WEIGHTS.items()))

        if severity == "critical" and breakdown.module_weight >= CRITICAL_MODULE_MIN_WEIGHT and total < 80:
            total = 80
            reasoning.append("Error crítico en módulo de máxima criticidad")

        priority = PriorityCalculator.score_to_priority(total)
        logger.debug(
            "Приоритет рассчитан: source=%s severity=%s occurrences=%d score=%d priority=%s",
            source, severity, factors.occurrence_count, total, priority.value,
        )
        return PriorityScore(total=total, breakdown=breakdown, priority=priority, reasoning=reasoning)

    @staticmethod
    def module_weight(error_source: str, route: str | None = None) -> int:
        """Вес модуля по источнику; совпавший префикс маршрута может только повысить его."""
        weight = MODULE_WEIGHTS.get(error_source, MODULE_WEIGHTS["unknown"])
        if route:
            for prefix, route_weight in ROUTE_WEIGHTS.items():
                if route.startswith(prefix):
                    weight = max(weight, route_weight)
                    break
        return weight

    @staticmethod
    def severity_weight(severity: str, error_type: str) -> int:
        severity_score = SEVERITY_WEIGHTS.get(severity, 50)
        type_score = ERROR_TYPE_WEIGHTS.get(error_type, 50)
        return _round_half_up(severity_score * 0.6 + type_score * 0.4)

    @staticmethod
    def frequency_weight(occurrence_count: int) -> int:
        for threshold, weight in FREQUENCY_STEPS:
            if occurrence_count >= threshold:
                return weight
        return FREQUENCY_BASE_WEIGHT

    @staticmethod
    def cascade_weight(indicators: CascadeIndicators | None) -> int:
        if not indicators:
            return 0
        weight = 0
        if indicators.has_related_errors:
            weight += 30
            weight += min(indicators.related_error_count * 10, 50)
        if indicators.is_root_cause:
            weight += 20
        return min(weight, 100)

    @staticmethod
    def pattern_weight(metadata: Dict[str, Any] | None = None, route: str | None = None) -> int:
        search_text = json.dumps(metadata or {}, default=str).lower() + (route or "").lower()
        matches = sum(1 for keyword in CRITICAL_KEYWORDS if keyword in search_text)
        return min(matches * KEYWORD_WEIGHT, 100)

    @staticmethod
    def score_to_priority(score: int) -> CalculatedPriority:
        for threshold, priority in PRIORITY_THRESHOLDS:
            if score >= threshold:
                return priority
        return CalculatedPriority.BAJA

    @staticmethod
    def map_severity_to_priority(severity: str) -> CalculatedPriority:
        """Прямое соответствие серьёзности и приоритета, когда полного набора признаков нет."""
        return SEVERITY_TO_PRIORITY.get(_value(severity), CalculatedPriority.MEDIA)
