import json

from sqlalchemy import select
from sqlalchemy.orm import Session

from image_builder.models import Build, BuildEvent, now_utc
from image_builder.state_machine import can_transition


__all__ = [
    "cas_build_state",
    "get_build",
    "list_build_events",
    "list_builds",
    "now_utc",
    "write_event",
]


def write_event(
    session: Session, event_type: str, payload: dict, build_id: str | None = None
) -> None:
    session.add(
        BuildEvent(
            build_id=build_id,
            event_type=event_type,
            payload_json=json.dumps(payload, sort_keys=True, default=str),
        )
    )


def get_build(session: Session, build_id: str) -> Build | None:
    return session.get(Build, build_id)


def list_builds(session: Session, state: str | None = None) -> list[Build]:
    query = select(Build)
    if state:
        query = query.where(Build.state == state)
    return list(session.scalars(query.order_by(Build.created_at.desc())))


def list_build_events(session: Session, build_id: str) -> list[BuildEvent]:
    query = (
        select(BuildEvent)
        .where(BuildEvent.build_id == build_id)
        .order_by(BuildEvent.id.asc())
    )
    return list(session.scalars(query))


def cas_build_state(
    session: Session,
    build: Build,
    expected: str,
    target: str,
    last_error: str | None = None,
) -> bool:
    if build.state != expected:
        return False
    if not can_transition(expected, target):
        return False
    build.state = target
    build.updated_at = now_utc()
    if last_error:
        build.last_error = last_error
    return True
