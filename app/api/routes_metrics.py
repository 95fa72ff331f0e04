from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.rbac import staff_or_admin_required

router = APIRouter()


@router.get("/metrics")
def metrics_endpoint(_auth=Depends(staff_or_admin_required)) -> Response:
    # Native counters are incremented at event points; just expose registry.
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
