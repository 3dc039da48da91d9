"""Dependency injection for API handlers."""

from typing import Annotated

from fastapi import Depends

from symlight.config import Settings, get_settings
from symlight.core.session import ExplainSession, get_session


def get_settings_dependency() -> Settings:
    """Get application settings.

    Wraps get_settings() so tests can override it.
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


def get_session_dependency() -> ExplainSession:
    """Get the process-wide explain session."""
    return get_session()


SessionDep = Annotated[ExplainSession, Depends(get_session_dependency)]
