from dataclasses import dataclass

SINGLE_VIEW = "single-view"
PAGED = "paged"
AUTO_PLAY = "auto-play"
DEFAULT_MODE_ID = SINGLE_VIEW


@dataclass(frozen=True)
class ModePolicy:
    mode_id: str
    label: str
    description: str
    navigation: str  # "whole", "manual" or "auto"
    allows_manual_navigation: bool
    auto_advance_enabled: bool
    wrap_on_advance: bool


_POLICIES = {
    SINGLE_VIEW: ModePolicy(
        SINGLE_VIEW,
        "Urinal Mode",
        "Quick viewing - see the full comic at once",
        "whole",
        allows_manual_navigation=False,
        auto_advance_enabled=False,
        wrap_on_advance=False,
    ),
    PAGED: ModePolicy(
        PAGED,
        "Stall Mode",
        "Take your time - frame by frame viewing",
        "manual",
        allows_manual_navigation=True,
        auto_advance_enabled=False,
        wrap_on_advance=False,
    ),
    AUTO_PLAY: ModePolicy(
        AUTO_PLAY,
        "Accessible Mode",
        "Sit back and relax - auto-play slideshow",
        "auto",
        allows_manual_navigation=False,
        auto_advance_enabled=True,
        wrap_on_advance=True,
    ),
}

# Identifiers used by older links.
_ALIASES = {
    "urinal": SINGLE_VIEW,
    "stall": PAGED,
    "handicapped": AUTO_PLAY,
}


def resolve(mode_id: str | None) -> ModePolicy:
    """Unknown or missing identifiers fall back to the single-view policy."""
    key = (mode_id or "").strip().lower()
    key = _ALIASES.get(key, key)
    return _POLICIES.get(key, _POLICIES[DEFAULT_MODE_ID])


def all_policies() -> list[ModePolicy]:
    return [_POLICIES[SINGLE_VIEW], _POLICIES[PAGED], _POLICIES[AUTO_PLAY]]
