"""Feature flags and the stack profiles that preset them."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace

from omniforge.errors import UnknownProfileError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

FLAG_ENV_NAMES = {
    "nextjs": "ENABLE_NEXTJS",
    "database": "ENABLE_DATABASE",
    "authjs": "ENABLE_AUTHJS",
    "ai_sdk": "ENABLE_AI_SDK",
    "pg_boss": "ENABLE_PG_BOSS",
    "shadcn": "ENABLE_SHADCN",
    "zustand": "ENABLE_ZUSTAND",
    "pdf_exports": "ENABLE_PDF_EXPORTS",
    "test_infra": "ENABLE_TEST_INFRA",
    "code_quality": "ENABLE_CODE_QUALITY",
}


@dataclass(frozen=True, slots=True)
class FeatureFlags:
    """Which stack components a bootstrap run should install."""

    nextjs: bool = True
    database: bool = True
    authjs: bool = False
    ai_sdk: bool = False
    pg_boss: bool = False
    shadcn: bool = False
    zustand: bool = False
    pdf_exports: bool = False
    test_infra: bool = False
    code_quality: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> FeatureFlags:
        return cls().apply_env(os.environ if env is None else env)

    def apply_env(self, env: Mapping[str, str]) -> FeatureFlags:
        """Return a copy with every ``ENABLE_*`` variable present in ``env`` applied."""

        overrides: dict[str, bool] = {}
        for attr, env_name in FLAG_ENV_NAMES.items():
            raw = env.get(env_name)
            if raw is None or not raw.strip():
                continue
            overrides[attr] = parse_bool(raw, name=env_name)
        return replace(self, **overrides)

    def as_env(self) -> dict[str, str]:
        return {
            env_name: "true" if getattr(self, attr) else "false"
            for attr, env_name in FLAG_ENV_NAMES.items()
        }

    def enabled(self) -> list[str]:
        return [item.name for item in fields(self) if getattr(self, item.name)]


@dataclass(frozen=True, slots=True)
class StackProfile:
    """A named preset of feature flags shown in the profile menu."""

    key: str
    name: str
    tagline: str
    description: str
    time_estimate: str
    recommended: bool = False
    dry_run_default: bool = False
    flags: FeatureFlags = field(default_factory=FeatureFlags)


PROFILES: dict[str, StackProfile] = {
    "ai_automation": StackProfile(
        key="ai_automation",
        name="AI_AUTOMATION",
        tagline="Intelligent Process Automation",
        description="BOS portal for document processing, RAG, and background AI workflows",
        time_estimate="~80 minutes",
        flags=FeatureFlags(
            authjs=True,
            ai_sdk=True,
            pg_boss=True,
            shadcn=True,
            test_infra=True,
            code_quality=True,
        ),
    ),
    "fpa_dashboard": StackProfile(
        key="fpa_dashboard",
        name="FPA_DASHBOARD",
        tagline="High-Integrity Financial Reporting",
        description="Secure FP&A dashboard with RBAC, charting, and PDF/Excel reporting",
        time_estimate="~70 minutes",
        flags=FeatureFlags(
            authjs=True,
            shadcn=True,
            zustand=True,
            pdf_exports=True,
            test_infra=True,
            code_quality=True,
        ),
    ),
    "collab_editor": StackProfile(
        key="collab_editor",
        name="COLLAB_EDITOR",
        tagline="Real-Time Document Control",
        description=(
            "Foundation for real-time apps (WebSockets/CRDT), complex state, async saving"
        ),
        time_estimate="~75 minutes",
        flags=FeatureFlags(
            authjs=True,
            pg_boss=True,
            shadcn=True,
            zustand=True,
            test_infra=True,
            code_quality=True,
        ),
    ),
    "erp_gateway": StackProfile(
        key="erp_gateway",
        name="ERP_GATEWAY",
        tagline="Secure Data Synchronization Layer",
        description="API-only profile for high-volume data sync with ERP (ETL/service auth)",
        time_estimate="~60 minutes",
        flags=FeatureFlags(
            authjs=True,
            pg_boss=True,
            test_infra=True,
            code_quality=True,
        ),
    ),
    "asset_manager": StackProfile(
        key="asset_manager",
        name="ASSET_MANAGER",
        tagline="Excel Replacement / Core CRUD",
        description="Core CRUD template replacing spreadsheets (high UI, heavy DB, reporting)",
        time_estimate="~65 minutes",
        recommended=True,
        flags=FeatureFlags(
            authjs=True,
            pg_boss=True,
            shadcn=True,
            zustand=True,
            pdf_exports=True,
            test_infra=True,
            code_quality=True,
        ),
    ),
    "tech_stack": StackProfile(
        key="tech_stack",
        name="TECH_STACK",
        tagline="Full Tech Stack Coverage",
        description=(
            "Enable every component under tech_stack/ to validate end-to-end installs"
        ),
        time_estimate="~90 minutes",
        dry_run_default=True,
        flags=FeatureFlags(**{attr: True for attr in FLAG_ENV_NAMES}),
    ),
}


def resolve_profile(identifier: str) -> StackProfile:
    """Look a profile up by key; case-insensitive, ``-`` and ``_`` interchangeable."""

    key = identifier.strip().lower().replace("-", "_")
    profile = PROFILES.get(key)
    if profile is None:
        raise UnknownProfileError(
            f"Unknown stack profile {identifier!r}. Available: {', '.join(PROFILES)}",
        )
    return profile


def profile_by_number(number: int) -> StackProfile:
    """1-based lookup in menu order."""

    profiles = list(PROFILES.values())
    if not 1 <= number <= len(profiles):
        raise UnknownProfileError(
            f"Profile number must be between 1 and {len(profiles)}, got {number}",
        )
    return profiles[number - 1]


def parse_bool(raw: str, *, name: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean-like value, got {raw!r}.")
