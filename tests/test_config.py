"""Tests for configuration management"""

import pytest
from concern_review.config import (
    Settings,
    DatabaseConfig,
    APIConfig,
    SecurityConfig,
    WorkflowConfig,
)


def test_settings_default_values(monkeypatch):
    """Test that settings load with default values"""
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    settings = Settings()

    assert settings.environment == "development"
    assert settings.debug is False
    assert settings.database.host == "localhost"
    assert settings.api.port == 8000


def test_database_config():
    """Test database configuration"""
    db_config = DatabaseConfig()

    assert db_config.port == 5432
    assert db_config.name == "concern_review"
    assert db_config.pool_size == 10
    assert db_config.statement_timeout_ms == 5000


def test_database_config_from_environment(monkeypatch):
    """Test DB_ prefixed variables override defaults"""
    monkeypatch.setenv("DB_BACKEND", "memory")
    monkeypatch.setenv("DB_SNAPSHOT_PATH", "/tmp/concerns.json")

    db_config = DatabaseConfig()

    assert db_config.backend == "memory"
    assert db_config.snapshot_path == "/tmp/concerns.json"


def test_api_config():
    """Test API configuration"""
    api_config = APIConfig()

    assert api_config.host == "0.0.0.0"
    assert api_config.timeout == 5


def test_workflow_config():
    """Test workflow defaults"""
    workflow = WorkflowConfig()

    assert workflow.review_deadline_hours == 24
    assert workflow.reference_retry_budget == 5
    assert workflow.class_dashboard_cap == 2
    assert workflow.auto_assign_class_reviewers is True


def test_database_url():
    """Test DATABASE_URL is assembled from the database section"""
    settings = Settings(
        database=DatabaseConfig(user="reviewer", password="pw", host="db", port=5433, name="concerns")
    )

    assert settings.DATABASE_URL == "postgresql://reviewer:pw@db:5433/concerns"


@pytest.mark.parametrize("environment,allow,expected", [
    ("development", False, True),
    ("production", False, False),
    ("production", True, True),
])
def test_dev_tokens_enabled(environment, allow, expected):
    """Token issuing follows environment unless explicitly allowed"""
    settings = Settings(environment=environment, security=SecurityConfig(allow_dev_tokens=allow))

    assert settings.dev_tokens_enabled is expected
