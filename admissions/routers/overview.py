from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from admissions.database.database import get_db
from admissions.services.overview_service import OverviewService

router = APIRouter(prefix="/overview")


@router.get("/pipeline")
async def pipeline_overview(db: Session = Depends(get_db)):
    """Counts per stage, message status and interview status"""
    return {"status": 200, "success": True, "data": OverviewService(db).pipeline_counts()}
