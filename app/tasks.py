"""
Celery Tasks
Background exports so the API never blocks on spreadsheet writes.
"""

import logging
import time

from app.celery_worker import celery_app
from app.services.excel_manager import ExcelManager

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True
)
def export_workspace_to_excel(self, export_data: dict) -> dict:
    """
    Write a workspace export (as built by reporting.build_workspace_export)
    to its Excel workbook.

    Args:
        export_data: JSON-ready workspace export

    Returns:
        dict: Result of the export operation
    """
    task_id = self.request.id
    workspace_id = export_data.get("workspace", {}).get("id", "unknown")

    logger.info(f"Task {task_id}: exporting workspace {workspace_id}")
    start_time = time.time()

    result = ExcelManager.export_workspace(export_data)

    elapsed = round(time.time() - start_time, 3)
    result["task_id"] = task_id
    result["processing_time_seconds"] = elapsed

    if result["success"]:
        logger.info(f"Task {task_id}: workspace {workspace_id} exported in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: workspace {workspace_id} export failed - {result['message']}")

    return result
