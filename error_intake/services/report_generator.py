"""
Выгрузка незакрытых системных ошибок в CSV.

Отчёт нужен администраторам для разбора ошибок вне панели: одна строка
на запись, самые свежие первыми. Файл сохраняется на диск и отдаётся
через эндпоинт `/api/download-report`.
"""

import os
from datetime import datetime
from typing import List

import pandas as pd

from error_intake.models.tracked_error import TrackedError

REPORT_COLUMNS = [
    "id",
    "calculated_priority",
    "priority_score",
    "severity",
    "error_source",
    "error_type",
    "message",
    "route",
    "method",
    "occurrence_count",
    "first_occurrence",
    "last_occurrence",
    "group_key",
    "is_transient",
    "ticket_id",
    "fingerprint",
]


class ReportGenerator:
    @staticmethod
    def build_dataframe(records: List[TrackedError]) -> pd.DataFrame:
        rows = [record.model_dump(mode="json", include=set(REPORT_COLUMNS)) for record in records]
        return pd.DataFrame(rows, columns=REPORT_COLUMNS)

    @staticmethod
    def report_filename(now: datetime) -> str:
        return f"system_errors_{now.strftime('%Y%m%d_%H%M%S')}.csv"

    @staticmethod
    def generate_csv_report(records: List[TrackedError], filepath: str) -> str:
        """
        Сохраняет отчёт в формате CSV по указанному пути.

        :param records: записи об ошибках.
        :param filepath: полный путь к CSV‑файлу, который будет создан.
        :return: путь к созданному CSV‑файлу.
        """
        df = ReportGenerator.build_dataframe(records)
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)
        # BOM нужен, чтобы Excel правильно показал кириллицу и испанские символы
        df.to_csv(filepath, index=False, encoding="utf-8-sig")
        return filepath
