import json

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from image_builder.db import SessionLocal
from image_builder.errors import ConfigError
from image_builder.metrics import metrics
from image_builder.models import Build
from image_builder.repositories import get_build, list_build_events, list_builds
from image_builder.schemas import (
    BuildConfig,
    BuildCreateResponse,
    BuildEventRead,
    BuildRead,
)
from image_builder.services.builds import BuildManager
from image_builder.state_machine import BuildState


router = APIRouter()
build_manager: BuildManager | None = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_build_manager() -> BuildManager:
    global build_manager
    if build_manager is None:
        build_manager = BuildManager()
    return build_manager


def _to_read(build: Build) -> BuildRead:
    return BuildRead(
        build_id=build.build_id,
        vm_name=build.vm_name,
        source_kind=build.source_kind,
        state=build.state,
        last_error=build.last_error,
        artifact_id=build.artifact_id,
        created_at=build.created_at,
        updated_at=build.updated_at,
    )


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/metrics")
def metrics_endpoint() -> dict[str, int]:
    return metrics.snapshot()


@router.post("/v1/builds", response_model=BuildCreateResponse, status_code=202)
def create_build(
    config: BuildConfig, manager: BuildManager = Depends(get_build_manager)
):
    try:
        build_id, warnings = manager.submit(config)
    except ConfigError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors, "warnings": exc.warnings},
        )
    return BuildCreateResponse(
        build_id=build_id, state=BuildState.QUEUED.value, warnings=warnings
    )


@router.get("/v1/builds", response_model=list[BuildRead])
def get_builds(
    state: str | None = Query(default=None), db: Session = Depends(get_db)
) -> list[BuildRead]:
    return [_to_read(build) for build in list_builds(db, state=state)]


@router.get("/v1/builds/{build_id}")
def get_build_detail(build_id: str, db: Session = Depends(get_db)) -> dict:
    build = get_build(db, build_id)
    if build is None:
        raise HTTPException(status_code=404, detail="unknown build")
    detail = _to_read(build).model_dump(mode="json")
    detail["artifact"] = json.loads(build.artifact_json) if build.artifact_json else None
    return detail


@router.get("/v1/builds/{build_id}/events", response_model=list[BuildEventRead])
def get_build_events(
    build_id: str, db: Session = Depends(get_db)
) -> list[BuildEventRead]:
    if get_build(db, build_id) is None:
        raise HTTPException(status_code=404, detail="unknown build")
    return [
        BuildEventRead(
            id=event.id,
            timestamp=event.timestamp,
            event_type=event.event_type,
            payload=json.loads(event.payload_json),
        )
        for event in list_build_events(db, build_id)
    ]


@router.post("/v1/builds/{build_id}/cancel")
def cancel_build(
    build_id: str, manager: BuildManager = Depends(get_build_manager)
) -> dict[str, bool]:
    if not manager.cancel(build_id):
        raise HTTPException(status_code=404, detail="unknown build")
    return {"ok": True}
