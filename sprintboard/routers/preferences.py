"""
Preference endpoints.

Scoped load/save of the persisted dashboard settings. Each preference is
stored under a fixed key name and can be read or written on its own.
"""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from sprintboard.models.schemas import DashboardConfig, PreferencesResponse, PreferenceValue
from sprintboard.services import preferences_store

router = APIRouter(prefix="/preferences", tags=["preferences"])

# Preference key -> DashboardConfig field used to validate its value
KEY_FIELDS = {
    preferences_store.ASSIGNEE_CAPS: "assignee_caps",
    preferences_store.SPRINT_DAYS: "sprint_days",
    preferences_store.PROGRAM_END_DATE: "program_end_date",
    preferences_store.PROJECT_TARGETS: "project_targets",
}


def ensure_known_key(key: str) -> str:
    if key not in KEY_FIELDS:
        raise HTTPException(status_code=404, detail=f"Unknown preference '{key}'")
    return KEY_FIELDS[key]


@router.get("", response_model=PreferencesResponse)
async def get_preferences() -> PreferencesResponse:
    """Return every stored preference."""
    return PreferencesResponse(**preferences_store.load_all())


@router.put("", response_model=PreferencesResponse)
async def replace_preferences(preferences: PreferencesResponse) -> PreferencesResponse:
    """Replace every preference at once."""
    config = DashboardConfig(**preferences.model_dump())
    preferences_store.save_dashboard_config(config)
    return PreferencesResponse(**preferences_store.load_all())


@router.get("/{key}", response_model=PreferenceValue)
async def get_preference(key: str) -> PreferenceValue:
    """Return a single preference."""
    ensure_known_key(key)
    return PreferenceValue(key=key, value=preferences_store.load(key, preferences_store.DEFAULTS[key]))


@router.put("/{key}", response_model=PreferenceValue)
async def put_preference(key: str, body: PreferenceValue) -> PreferenceValue:
    """Save a single preference; the value is validated like the full config."""
    field_name = ensure_known_key(key)
    try:
        validated = DashboardConfig(**{field_name: body.value})
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False)) from exc

    value = getattr(validated, field_name)
    preferences_store.save_value(key, dict(value) if isinstance(value, dict) else value)
    return PreferenceValue(key=key, value=preferences_store.load(key, preferences_store.DEFAULTS[key]))


@router.delete("/{key}", response_model=PreferenceValue)
async def delete_preference(key: str) -> PreferenceValue:
    """Forget a preference, restoring its default."""
    ensure_known_key(key)
    preferences_store.delete(key)
    return PreferenceValue(key=key, value=preferences_store.DEFAULTS[key])
