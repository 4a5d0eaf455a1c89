from fastapi import APIRouter, Depends

from ..database import STORAGE_KEYS, KeyValueStore
from ..models import BillingSettings
from ..schemas import BillingSettingsUpdate, Preferences
from . import get_store

router = APIRouter(prefix="/settings", tags=["Settings"])


@router.get("/billing", response_model=BillingSettings)
def read_billing_settings(store: KeyValueStore = Depends(get_store)):
    return store.billing_settings()


@router.patch("/billing", response_model=BillingSettings)
def edit_billing_settings(payload: BillingSettingsUpdate, store: KeyValueStore = Depends(get_store)):
    settings = store.billing_settings().model_copy(update=payload.model_dump(exclude_unset=True))
    settings = BillingSettings.model_validate(settings.model_dump())
    store.save_billing_settings(settings)
    store.session.commit()
    return settings


@router.get("/preferences", response_model=Preferences)
def read_preferences(store: KeyValueStore = Depends(get_store)):
    return Preferences(
        dark_mode=store.get(STORAGE_KEYS.DARK_MODE, False),
        setup_complete=store.get(STORAGE_KEYS.SETUP_COMPLETE, False),
    )


@router.put("/preferences", response_model=Preferences)
def save_preferences(payload: Preferences, store: KeyValueStore = Depends(get_store)):
    store.set(STORAGE_KEYS.DARK_MODE, payload.dark_mode)
    store.set(STORAGE_KEYS.SETUP_COMPLETE, payload.setup_complete)
    store.session.commit()
    return payload
