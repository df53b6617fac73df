import pytest
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from kpi_review.database import Base, get_db
from kpi_review.main import app
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Fresh schema per test. Services commit and roll back for real, so the
    tables are rebuilt instead of wrapping the test in an outer transaction.
    """
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def make_kpi(db_session):
    """Factory for a KPI with items. Items are dicts of KPIItem columns."""
    from kpi_review.models.kpi import KPI, KPIItem, KPIStatus, Period

    def _make_kpi(items=None, status=KPIStatus.ACKNOWLEDGED, period=Period.QUARTERLY, department_id=10,
                  employee_id=1, manager_id=2):
        kpi = KPI(
            employee_id=employee_id,
            manager_id=manager_id,
            department_id=department_id,
            title="Q1 Sales Targets",
            period=Period(period).value,
            quarter="Q1" if Period(period) == Period.QUARTERLY else None,
            year=2026,
            status=KPIStatus(status).value,
        )
        if items is None:
            items = [
                {"title": "Revenue", "target_value": 100, "goal_weight": 0.3},
                {"title": "New accounts", "target_value": 20, "goal_weight": 0.3},
                {"title": "Retention", "target_value": 90, "goal_weight": 0.4},
            ]
        kpi.items = [KPIItem(**item) for item in items]
        db_session.add(kpi)
        db_session.commit()
        db_session.refresh(kpi)
        return kpi
    return _make_kpi


@pytest.fixture(scope="function")
def make_config(db_session):
    """Store a department calculation config row."""
    from kpi_review.models.calculation_config import DepartmentCalculationConfig
    from kpi_review.models.kpi import Period

    def _make_config(department_id=10, period=Period.QUARTERLY, method="normal", self_rating=True):
        row = DepartmentCalculationConfig(
            department_id=department_id,
            period=Period(period).value,
            use_normal_calculation=method == "normal",
            use_goal_weight=method == "goal_weight",
            use_actual_values=method == "actual",
            enable_employee_self_rating=self_rating,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _make_config


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
