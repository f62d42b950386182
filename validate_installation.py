#!/usr/bin/env python3
"""
Validation script for Directory Import.

This script validates that all dependencies are installed correctly
and that the core import pipeline works against an in-memory database.
"""

import sys
import asyncio
import importlib


def check_dependency(package_name, import_name=None):
    """Check if a package/module can be imported."""
    if import_name is None:
        import_name = package_name

    try:
        importlib.import_module(import_name)
        return True, f"✓ {package_name} available"
    except ImportError as e:
        return False, f"✗ {package_name} missing: {e}"


def validate_dependencies():
    """Validate all required dependencies."""
    print("=== Dependency Validation ===")

    dependencies = [
        ("PyYAML", "yaml"),
        ("SQLAlchemy", "sqlalchemy"),
        ("cryptography", "cryptography"),
        ("python-jose", "jose"),
        ("pytest", "pytest"),
        ("pytest-mock", "pytest_mock"),
    ]

    all_ok = True
    for pkg_name, import_name in dependencies:
        ok, message = check_dependency(pkg_name, import_name)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_core_modules():
    """Validate core application modules."""
    print("\n=== Core Module Validation ===")

    modules = [
        "directory_import.cancellation",
        "directory_import.config",
        "directory_import.google_client",
        "directory_import.importers",
        "directory_import.logging_setup",
        "directory_import.main",
        "directory_import.models",
        "directory_import.phone",
        "directory_import.store",
    ]

    all_ok = True
    for module in modules:
        ok, message = check_dependency(module, module)
        print(f"  {message}")
        if not ok:
            all_ok = False

    return all_ok


def validate_functionality():
    """Validate key functionality."""
    print("\n=== Functionality Validation ===")

    try:
        from directory_import.config import ImportSettings
        settings = ImportSettings()
        assert settings.is_ignored('/sluttet') and not settings.is_ignored('/Engineering')
        print("  ✓ Import settings")

        from directory_import.google_client import RemotePhone
        from directory_import.phone import normalize_phone_number
        assert normalize_phone_number([RemotePhone('998 87 766', primary=True)]) == '+4799887766'
        print("  ✓ Phone number normalization")

        from sqlalchemy import create_engine
        from directory_import.google_client import RemoteOrgUnit
        from directory_import.importers import OrgUnitImporter
        from directory_import.store import DirectoryStore, create_schema, create_session_factory

        class SingleUnitDirectory:
            async def stream_org_units(self, token=None):
                yield RemoteOrgUnit('/Engineering', '_Engineering', '/')

        engine = create_engine('sqlite://', future=True)
        create_schema(engine)
        with DirectoryStore(create_session_factory(engine)()) as store:
            count = asyncio.run(OrgUnitImporter(SingleUnitDirectory(), store).import_org_units())
        assert count == 2, f"expected 2 changes, got {count}"
        print("  ✓ Organization unit import against SQLite")

        return True

    except Exception as e:
        print(f"  ✗ Functionality test failed: {e}")
        return False


def validate_cli():
    """Validate command-line interface."""
    print("\n=== CLI Validation ===")

    try:
        import subprocess

        result = subprocess.run([sys.executable, "-m", "directory_import.main", "--help"],
                                capture_output=True, text=True)
        if result.returncode == 0:
            print("  ✓ Help command working")
        else:
            print("  ✗ Help command failed")
            return False

        result = subprocess.run([sys.executable, "-m", "directory_import.main",
                                 "--config", "/nonexistent/config.yaml"],
                                capture_output=True, text=True)
        if result.returncode == 2:
            print("  ✓ Missing configuration reported with exit code 2")
        else:
            print(f"  ✗ Unexpected exit code {result.returncode} for missing configuration")
            return False

        return True

    except Exception as e:
        print(f"  ✗ CLI validation failed: {e}")
        return False


def main():
    """Run all validations."""
    print("Directory Import - Installation Validation")
    print("=" * 50)

    all_validations = [
        validate_dependencies(),
        validate_core_modules(),
        validate_functionality(),
        validate_cli(),
    ]

    print("\n=== Summary ===")
    if all(all_validations):
        print("✓ All validations passed!")
        print("✓ Directory Import is ready for use")
        print("\nNext steps:")
        print("  1. Configure the Google and database settings in config.yaml")
        print("  2. Create the tables with: directory-import --init-db")
        print("  3. Test with: directory-import --health-check")
        print("  4. Run the import: directory-import")
        return 0
    else:
        print("✗ Some validations failed!")
        print("Please resolve the issues above before using the application.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
