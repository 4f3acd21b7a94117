"""
Recommendations API Router

Read-only. Recommendations appear some time after an activity is tracked;
until then the per-activity lookup returns 404.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
from core.database import get_db
from schemas import RecommendationResponse
from services.recommendation_store import RecommendationStore

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


@router.get("", response_model=List[RecommendationResponse])
def list_user_recommendations(
    user_id: str = Query(..., alias="userId", min_length=1),
    db: Session = Depends(get_db),
):
    return RecommendationStore(db).by_user(user_id)


@router.get("/activity/{activity_id}", response_model=RecommendationResponse)
def get_activity_recommendation(
    activity_id: UUID,
    db: Session = Depends(get_db),
):
    return RecommendationStore(db).by_activity(activity_id)
