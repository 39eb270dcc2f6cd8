"""
Kernel Boundary & Invariants Contract.

Tests that enforce the kernel's architectural boundaries:

1. fulfillment_kernel/** may NOT import fulfillment_config.  Settings reach
   the kernel only as a FulfillmentPolicy built by the config bridge.

2. fulfillment_kernel/domain/** is pure: no ORM or database imports.

3. Selectors are read-only: they never import the ledger or any service.

4. The kernel invariants declaration is complete and non-empty.

These tests read source code via AST; they cannot break anything.
"""

import ast
from pathlib import Path

from fulfillment_kernel.invariants import (
    ALL_KERNEL_INVARIANTS,
    FORBIDDEN_KERNEL_IMPORTS,
    KernelInvariant,
)

REPO_ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _python_files(package: str) -> list[Path]:
    return sorted((REPO_ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))

    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    rel = filepath.relative_to(REPO_ROOT)
                    found.append(f"  {rel}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestKernelNoUpwardDependencies:

    def test_kernel_does_not_import_config(self):
        violations = _violations("fulfillment_kernel", FORBIDDEN_KERNEL_IMPORTS)

        assert not violations, (
            "Kernel boundary violation: fulfillment_kernel/** must not import "
            "configuration packages:\n" + "\n".join(violations)
        )

    def test_scan_actually_sees_the_kernel(self):
        assert len(_python_files("fulfillment_kernel")) > 20


class TestKernelDomainPurity:
    """fulfillment_kernel/domain/** must not import ORM or DB packages."""

    FORBIDDEN_MODULES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "fulfillment_kernel.db",
        "fulfillment_kernel.models",
        "fulfillment_kernel.services",
    )

    def test_domain_no_orm_imports(self):
        violations = _violations("fulfillment_kernel/domain", self.FORBIDDEN_MODULES)

        assert not violations, (
            "Domain purity violation: fulfillment_kernel/domain/** must not "
            "import ORM or database code:\n" + "\n".join(violations)
        )


class TestSelectorsAreReadOnly:

    def test_selectors_do_not_import_services(self):
        violations = _violations(
            "fulfillment_kernel/selectors", ("fulfillment_kernel.services",)
        )

        assert not violations, (
            "Selectors must not depend on write-side services:\n" + "\n".join(violations)
        )


class TestInvariantsDeclaration:

    def test_invariants_declared(self):
        assert ALL_KERNEL_INVARIANTS == frozenset(KernelInvariant)
        assert {
            KernelInvariant.STOCK_NON_NEGATIVE,
            KernelInvariant.RESERVATION_BOUNDED,
            KernelInvariant.TERMINAL_FROZEN,
            KernelInvariant.AUDIT_APPEND_ONLY,
        } <= ALL_KERNEL_INVARIANTS

    def test_invariant_values_are_snake_case(self):
        for invariant in KernelInvariant:
            assert invariant.value == invariant.name.lower()
