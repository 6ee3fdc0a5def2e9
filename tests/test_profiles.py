from __future__ import annotations

import allure
import pytest

from omniforge.errors import UnknownProfileError
from omniforge.profiles import (
    PROFILES,
    FeatureFlags,
    parse_bool,
    profile_by_number,
    resolve_profile,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Stack Profiles"),
]


def test_default_flags_enable_only_core_components() -> None:
    assert FeatureFlags().enabled() == ["nextjs", "database"]


def test_from_env_applies_enable_variables() -> None:
    flags = FeatureFlags.from_env(
        {"ENABLE_AUTHJS": "true", "ENABLE_DATABASE": "0", "ENABLE_ZUSTAND": "  "},
    )

    assert flags.authjs is True
    assert flags.database is False
    assert flags.zustand is False


def test_apply_env_overrides_profile_preset() -> None:
    flags = resolve_profile("asset_manager").flags.apply_env({"ENABLE_PDF_EXPORTS": "off"})

    assert flags.pdf_exports is False
    assert flags.authjs is True


def test_as_env_round_trips_through_from_env() -> None:
    flags = FeatureFlags(ai_sdk=True, nextjs=False)

    env = flags.as_env()

    assert env["ENABLE_AI_SDK"] == "true"
    assert env["ENABLE_NEXTJS"] == "false"
    assert FeatureFlags.from_env(env) == flags


def test_invalid_flag_value_names_the_variable() -> None:
    with pytest.raises(ValueError, match="ENABLE_SHADCN"):
        FeatureFlags.from_env({"ENABLE_SHADCN": "sometimes"})


def test_resolve_profile_is_lenient_about_case_and_separators() -> None:
    assert resolve_profile("Asset-Manager") is PROFILES["asset_manager"]


def test_unknown_profile_lists_available_keys() -> None:
    with pytest.raises(UnknownProfileError, match="asset_manager"):
        resolve_profile("monolith")


def test_profile_by_number_follows_menu_order() -> None:
    assert profile_by_number(1).key == "ai_automation"
    assert profile_by_number(len(PROFILES)).key == "tech_stack"
    with pytest.raises(UnknownProfileError):
        profile_by_number(0)


def test_exactly_one_profile_is_recommended_and_tech_stack_enables_everything() -> None:
    assert [profile.key for profile in PROFILES.values() if profile.recommended] == [
        "asset_manager",
    ]
    tech_stack = PROFILES["tech_stack"]
    assert tech_stack.dry_run_default
    assert len(tech_stack.flags.enabled()) == 10


@pytest.mark.parametrize(("raw", "expected"), [("YES", True), (" on ", True), ("0", False)])
def test_parse_bool_accepts_common_spellings(raw: str, expected: bool) -> None:
    assert parse_bool(raw, name="FLAG") is expected
