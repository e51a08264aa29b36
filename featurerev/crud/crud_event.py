from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from pydantic_core import to_jsonable_python

from featurerev.models.event import Event
from featurerev.schemas.organization import EventUser


def create_event(
    db: Session,
    *,
    organization: str,
    event: str,
    object_id: Optional[str],
    data: Dict[str, Any],
    projects: List[str],
    tags: List[str],
    environments: List[str],
    user: Optional[EventUser] = None,
    contains_secrets: bool = False,
) -> Event:
    db_obj = Event(
        organization=organization,
        event=event,
        object_id=object_id,
        data=to_jsonable_python(data),
        projects=projects,
        tags=tags,
        environments=environments,
        user=to_jsonable_python(user) if user else None,
        contains_secrets=contains_secrets,
    )
    db.add(db_obj)
    db.commit()
    db.refresh(db_obj)
    return db_obj


def get_events(
    db: Session,
    *,
    organization: str,
    object_id: Optional[str] = None,
    event: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Event]:
    query = db.query(Event).filter(Event.organization == organization)

    if object_id:
        query = query.filter(Event.object_id == object_id)
    if event:
        query = query.filter(Event.event == event)

    return query.order_by(Event.date_created.desc(), Event.id).offset(skip).limit(limit).all()
