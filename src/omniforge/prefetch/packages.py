"""Package list derivation from feature flags.

Specs are ``<manager>:<name>[@<version>]``; the manager prefix selects how a
package is warmed (``npm`` and ``pnpm`` are understood).
"""

from __future__ import annotations

from dataclasses import dataclass

from omniforge.profiles import FeatureFlags

SUPPORTED_MANAGERS = frozenset({"npm", "pnpm"})

CORE_PACKAGES: tuple[str, ...] = ("npm:typescript", "npm:@types/node")

FLAG_PACKAGES: dict[str, tuple[str, ...]] = {
    "nextjs": (
        "npm:next",
        "npm:react",
        "npm:react-dom",
        "npm:@types/react",
        "npm:@types/react-dom",
    ),
    "database": (
        "npm:drizzle-orm",
        "npm:drizzle-kit",
        "npm:postgres",
        "npm:@vercel/postgres",
    ),
    "authjs": ("npm:next-auth", "npm:@auth/drizzle-adapter"),
    "ai_sdk": ("npm:ai", "npm:@ai-sdk/openai", "npm:@ai-sdk/anthropic"),
    "pg_boss": ("npm:pg-boss",),
    "shadcn": (
        "npm:tailwindcss",
        "npm:autoprefixer",
        "npm:postcss",
        "npm:class-variance-authority",
        "npm:clsx",
        "npm:tailwind-merge",
        "npm:lucide-react",
        "npm:@radix-ui/react-slot",
    ),
    "pdf_exports": ("npm:jspdf", "npm:xlsx"),
    "test_infra": ("npm:vitest", "npm:@playwright/test", "npm:@testing-library/react"),
    "code_quality": (
        "npm:eslint",
        "npm:prettier",
        "npm:@typescript-eslint/parser",
        "npm:@typescript-eslint/eslint-plugin",
    ),
}


@dataclass(frozen=True, slots=True)
class PackageSpec:
    manager: str
    name: str
    version: str | None = None

    @classmethod
    def parse(cls, spec: str) -> PackageSpec:
        """Split ``npm:@scope/name@1.2.3``; a spec without a prefix defaults to npm."""

        prefix, sep, rest = spec.partition(":")
        manager = prefix.strip().lower() if sep else "npm"
        rest = (rest if sep else spec).strip()
        at = rest.rfind("@")
        if at > 0:
            return cls(manager=manager, name=rest[:at], version=rest[at + 1 :] or None)
        return cls(manager=manager, name=rest)

    @property
    def requirement(self) -> str:
        return f"{self.name}@{self.version}" if self.version else self.name

    @property
    def tarball_prefix(self) -> str:
        """File-name prefix npm uses for this package's tarball (``@a/b`` -> ``a-b``)."""

        return self.name.lstrip("@").replace("/", "-")


def packages_for_flags(flags: FeatureFlags) -> list[str]:
    """Deterministic, de-duplicated package list for the enabled flags."""

    ordered: list[str] = list(CORE_PACKAGES)
    for attr, specs in FLAG_PACKAGES.items():
        if getattr(flags, attr):
            ordered.extend(specs)
    return list(dict.fromkeys(ordered))
