"""
Pytest fixtures for the facility ledger test suite.

Provides:
- Deterministic clock, in-memory document store and SQLite-backed store
- The default configuration set (CANET / HUARTE)
- Recording notifier and a static user directory with one user per role
- A fully wired LedgerOrchestrator with seeded master data
- Structured log capture
"""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from ledger_config import get_active_config
from ledger_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url, reset_engine
from ledger_kernel.domain.access import Actor
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.master_data import (
    LotMasterEntry,
    MasterData,
    ProductMaster,
    StockMode,
    Warehouse,
)
from ledger_kernel.domain.movement import MovementInput
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_services.collaborators import RecordingNotifier, StaticIdentityProvider
from ledger_services.orchestrator import LedgerOrchestrator
from ledger_services.repository import InMemoryDocumentRepository
from ledger_services.sql_repository import SqlDocumentRepository


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, services):
            services.ledger.post_movement(...)
            logs = captured_logs()
            assert any(r["message"] == "movement_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Users
# =============================================================================

ADMIN = Actor("u-admin", "Ana Admin", frozenset({"admin"}))
CANET_MANAGER = Actor("u-canet-mgr", "Carles Manager", frozenset({"canet_manager"}))
CANET_OPERATOR = Actor("u-canet-op", "Clara Operator", frozenset({"canet_operator"}))
HUARTE_MANAGER = Actor("u-huarte-mgr", "Hugo Manager", frozenset({"huarte_manager"}))
VIEWER = Actor("u-viewer", "Vera Viewer", frozenset())

ALL_USERS = (ADMIN, CANET_MANAGER, CANET_OPERATOR, HUARTE_MANAGER, VIEWER)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def config():
    return get_active_config()


@pytest.fixture
def repository(deterministic_clock):
    return InMemoryDocumentRepository(deterministic_clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def identity():
    return StaticIdentityProvider(ALL_USERS, current_user_id=ADMIN.id)


@pytest.fixture
def sql_session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = init_engine_from_url("sqlite://")
    create_tables(engine)
    yield get_session_factory()
    reset_engine()


@pytest.fixture
def sql_repository(sql_session_factory, deterministic_clock):
    return SqlDocumentRepository(sql_session_factory, deterministic_clock)


# =============================================================================
# Master data
# =============================================================================


def seed_master() -> MasterData:
    """Master tables shared by both facilities in most tests."""
    return MasterData(
        lots=(
            LotMasterEntry("SV", "SV-24A", received_units=Decimal("1200"),
                           expiry_date=date(2027, 6, 30)),
            LotMasterEntry("SV", "SV-24B", expiry_date=date(2026, 4, 15)),
            LotMasterEntry("KT", "KT-001", received_units=Decimal("300")),
        ),
        products=(
            ProductMaster("SV", monthly_consumption=Decimal("100"), stock_minimum=Decimal("150")),
            ProductMaster(
                "KT",
                monthly_consumption=Decimal("10"),
                stock_mode=StockMode.ASSEMBLED,
                units_per_assembly=Decimal("6"),
            ),
        ),
        warehouses=(Warehouse("CANET"), Warehouse("HUARTE")),
        clients=("Farmacia Central",),
    )


@pytest.fixture
def services(repository, config, notifier, identity, deterministic_clock):
    """Wired services over an in-memory store, master data seeded in both facilities."""
    orchestrator = LedgerOrchestrator(
        repository=repository,
        config=config,
        notifier=notifier,
        identity=identity,
        clock=deterministic_clock,
    )
    for code in config.facility_codes:
        orchestrator.master_data.import_master_data(code, seed_master(), ADMIN)
    notifier.clear()
    return orchestrator


def movement_input(
    movement_type: str = "entrada",
    quantity: str | int = 500,
    *,
    product: str = "SV",
    lot: str = "SV-24A",
    warehouse: str = "CANET",
    date_: str = "2026-03-01",
    **extra,
) -> MovementInput:
    return MovementInput(
        date=date_,
        movement_type=movement_type,
        product=product,
        lot=lot,
        warehouse=warehouse,
        quantity=Decimal(str(quantity)),
        **extra,
    )


@pytest.fixture
def make_input():
    """Factory fixture building MovementInput with sensible defaults."""
    return movement_input
