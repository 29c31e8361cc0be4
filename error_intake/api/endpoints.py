"""
HTTP‑эндпоинты администратора для просмотра и закрытия системных ошибок.

Маршрутизатор подключается с префиксом ``/api``. Сервис учёта ошибок и
настройки берутся из ``request.app.state``, куда их кладёт `create_app`.
"""

import logging
import os
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel

from error_intake.models.tracked_error import TrackedError
from error_intake.services.error_tracker import ErrorTrackingService
from error_intake.services.report_generator import ReportGenerator

logger = logging.getLogger(__name__)
router = APIRouter()


class ResolveRequest(BaseModel):
    resolved_by: str


def get_tracker(request: Request) -> ErrorTrackingService:
    return request.app.state.error_tracker


def get_reports_dir(request: Request) -> str:
    return request.app.state.settings.reports_dir


@router.get("/admin/system-errors", response_model=List[TrackedError])
async def list_system_errors(request: Request, limit: int = Query(50, ge=1, le=1000)):
    """Незакрытые системные ошибки, самые свежие первыми."""
    return await get_tracker(request).get_unresolved_errors(limit)


@router.get("/admin/system-errors/stats")
async def system_error_stats(request: Request):
    return await get_tracker(request).get_error_stats()


@router.get("/admin/system-errors/export")
async def export_system_errors(request: Request):
    """
    Сохраняет CSV‑отчёт по незакрытым ошибкам.

    :return: словарь с количеством записей и ``csv_url`` для скачивания.
    """
    tracker = get_tracker(request)
    records = await tracker.get_unresolved_errors(limit=1000)
    filename = ReportGenerator.report_filename(tracker.clock())
    csv_path = ReportGenerator.generate_csv_report(records, os.path.join(get_reports_dir(request), filename))
    logger.info("CSV-отчёт сохранён: %s (%d записей)", csv_path, len(records))
    return {
        "total": len(records),
        "csv_url": f"/api/download-report?path={filename}",
    }


@router.post("/admin/system-errors/{error_id}/resolve", response_model=TrackedError)
async def resolve_system_error(error_id: str, body: ResolveRequest, request: Request):
    try:
        return await get_tracker(request).resolve_error(error_id, body.resolved_by)
    except KeyError:
        raise HTTPException(status_code=404, detail="Error no encontrado")


@router.get("/download-report")
async def download_report(request: Request, path: str):
    """
    Возвращает CSV‑файл отчёта по имени файла.

    :param path: имя файла в каталоге отчётов; каталоги в пути отбрасываются.
    :raises HTTPException: если файл не найден.
    """
    csv_full_path = os.path.join(get_reports_dir(request), os.path.basename(path))
    if not os.path.isfile(csv_full_path):
        raise HTTPException(status_code=404, detail="Archivo no encontrado")
    return FileResponse(csv_full_path, filename="system_errors_report.csv", media_type="text/csv")


