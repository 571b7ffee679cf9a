"""
Import validation tests.

These tests ensure all modules can be imported successfully, catching
issues like missing dependencies or circular imports before release.

Run with: pytest tests/unit/test_imports.py -v
"""

import importlib

import pytest


class TestPackageImports:
    """Verify every engine module imports without errors."""

    @pytest.mark.parametrize("module_name", [
        "reservation_engine",
        "reservation_engine.config.settings",
        "reservation_engine.models",
        "reservation_engine.repositories.base",
        "reservation_engine.repositories.schema",
        "reservation_engine.repositories.postgres_repo",
        "reservation_engine.repositories.dynamodb_repo",
        "reservation_engine.services.inventory_service",
        "reservation_engine.services.voucher_service",
        "reservation_engine.services.reservation_service",
        "reservation_engine.services.validation_service",
        "reservation_engine.services.payment_service",
        "reservation_engine.services.factory",
        "reservation_engine.utils.error_handling",
        "reservation_engine.utils.logging_config",
        "reservation_engine.utils.validators",
    ])
    def test_module_import(self, module_name: str):
        """Each module should import without errors."""
        try:
            module = importlib.import_module(module_name)
            assert module is not None
        except ImportError as e:
            pytest.fail(f"Failed to import {module_name}: {e}")

    def test_services_package_is_lazy(self):
        """The services package must not eagerly import backends."""
        module = importlib.import_module("reservation_engine.services")
        assert not hasattr(module, "ReservationService")
