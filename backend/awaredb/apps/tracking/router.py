from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from awaredb.database import get_db
from awaredb.errors import MissingIdentifier

from . import schemas, services


router = APIRouter(
    prefix="/api",
    tags=["tracking"],
)


def _tracking_id(payload: schemas.TrackingRequest) -> str:
    tracking_link_id = payload.resolved_tracking_id
    if not tracking_link_id:
        raise MissingIdentifier("Missing tracking ID")
    return tracking_link_id


@router.post("/track-view", response_model=schemas.TrackingResponse, response_model_exclude_none=True)
def track_view(payload: schemas.ViewRequest, db: Session = Depends(get_db)):
    result = services.track_view(db, _tracking_id(payload), content_id=payload.content_id)
    db.commit()
    return result


@router.post(
    "/track-follow-on-view",
    response_model=schemas.TrackingResponse,
    response_model_exclude_none=True,
)
def track_follow_on_view(payload: schemas.TrackingRequest, db: Session = Depends(get_db)):
    result = services.track_follow_on_view(db, _tracking_id(payload))
    db.commit()
    return result


@router.post("/track-interaction", response_model=schemas.InteractionResponse)
def track_interaction(payload: schemas.InteractionRequest, db: Session = Depends(get_db)):
    event = services.track_interaction(
        db,
        _tracking_id(payload),
        tag_name=payload.tag_name,
        interaction_type=payload.interaction_type,
        interaction_value=payload.interaction_value,
        success=payload.success,
    )
    db.commit()
    return {"success": True, "interaction_id": event.id}


@router.post("/record-score", response_model=schemas.ScoreResponse, response_model_exclude_none=True)
def record_score(payload: schemas.ScoreRequest, db: Session = Depends(get_db)):
    # Commits internally, together with the completion event.
    return services.submit_score(
        db,
        _tracking_id(payload),
        payload.score,
        role_hint=payload.content_role,
        content_id=payload.content_id,
        interactions=payload.interactions,
    )


@router.post("/report-phishing", response_model=schemas.TrackingResponse, response_model_exclude_none=True)
def report_phishing(payload: schemas.TrackingRequest, db: Session = Depends(get_db)):
    result = services.report_phishing(db, _tracking_id(payload))
    db.commit()
    return result


@router.post("/track-data-entry", response_model=schemas.TrackingResponse, response_model_exclude_none=True)
def track_data_entry(payload: schemas.TrackingRequest, db: Session = Depends(get_db)):
    result = services.track_data_entry(db, _tracking_id(payload))
    db.commit()
    return result
