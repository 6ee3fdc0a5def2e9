from __future__ import annotations

import allure

from omniforge.prefetch.packages import CORE_PACKAGES, PackageSpec, packages_for_flags
from omniforge.profiles import FeatureFlags

pytestmark = [
    allure.epic("Package Prefetch"),
    allure.feature("Package Lists"),
]


def test_parse_scoped_spec_with_version() -> None:
    spec = PackageSpec.parse("npm:@types/node@20.11.0")

    assert spec == PackageSpec(manager="npm", name="@types/node", version="20.11.0")
    assert spec.requirement == "@types/node@20.11.0"
    assert spec.tarball_prefix == "types-node"


def test_parse_without_prefix_defaults_to_npm() -> None:
    spec = PackageSpec.parse("@radix-ui/react-slot")

    assert spec.manager == "npm"
    assert spec.name == "@radix-ui/react-slot"
    assert spec.version is None
    assert spec.requirement == "@radix-ui/react-slot"


def test_parse_keeps_unknown_manager_for_the_fetcher_to_reject() -> None:
    assert PackageSpec.parse("yarn:left-pad@1.3.0").manager == "yarn"


def test_packages_for_defaults_start_with_core() -> None:
    packages = packages_for_flags(FeatureFlags())

    assert packages[: len(CORE_PACKAGES)] == list(CORE_PACKAGES)
    assert "npm:next" in packages
    assert "npm:drizzle-orm" in packages
    assert "npm:next-auth" not in packages


def test_packages_are_deterministic_and_unique() -> None:
    flags = FeatureFlags(**dict.fromkeys(("authjs", "ai_sdk", "shadcn", "test_infra"), True))

    first = packages_for_flags(flags)

    assert first == packages_for_flags(flags)
    assert len(first) == len(set(first))


def test_all_flags_off_leaves_core_only() -> None:
    assert packages_for_flags(FeatureFlags(nextjs=False, database=False)) == list(CORE_PACKAGES)
