from fastapi import Depends
from sqlmodel import Session

from ..database import KeyValueStore, get_session


def get_store(session: Session = Depends(get_session)) -> KeyValueStore:
    return KeyValueStore(session)
