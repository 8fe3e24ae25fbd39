from __future__ import annotations

from config.settings import Settings

FLAG_LEADERBOARDS = "leaderboards"


def feature_enabled(flag: str, settings: Settings | None) -> bool:
    """
    Case-insensitive lookup in FEATURE_FLAGS. No settings means every flag is off.
    """
    if settings is None:
        return False
    wanted = flag.strip().lower()
    return any(enabled.strip().lower() == wanted for enabled in settings.feature_flags)
