"""Configuration loading: YAML file plus environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets

import yaml

from config_models import AppConfig, AuditConfig

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes")


def _env_flag(name: str, default) -> bool:
    return os.environ.get(name, str(default)).lower() in _TRUE_VALUES


def _module_list(raw) -> tuple:
    if isinstance(raw, str):
        raw = raw.split(",")
    items = (str(item).strip() for item in raw or () if item is not None)
    return tuple(item for item in items if item)


def load_config():
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    Returns (AppConfig, AuditConfig, database_uri).
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    audit_cfg = raw.get("audit", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    return (
        AppConfig(
            name=os.environ.get("APP_NAME", app_cfg.get("name", "change-audit")),
            secret_key=secret_key,
        ),
        AuditConfig(
            enabled=_env_flag("AUDIT_ENABLED", audit_cfg.get("enabled", True)),
            strict=_env_flag("AUDIT_STRICT", audit_cfg.get("strict", False)),
            proxy_modules=_module_list(
                os.environ.get("AUDIT_PROXY_MODULES", audit_cfg.get("proxy_modules", ()))
            ),
        ),
        os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///change_audit.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
