# backend/stockpool/config.py
from __future__ import annotations
import os


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockpool.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockpool.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoice numbers are "{prefix}-{sequence}"; companies may override the prefix
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "FACT")

    # Payment methods accepted at checkout. The credit method enables credit terms.
    CREDIT_PAYMENT_METHOD = os.environ.get("CREDIT_PAYMENT_METHOD", "CREDIT")
    PAYMENT_METHODS = _csv(
        os.environ.get("PAYMENT_METHODS", "CASH,CARD,TRANSFER,NEQUI,DAVIPLATA,CREDIT")
    )

    # Placeholder email domain for customers created without an email
    CUSTOMER_EMAIL_DOMAIN = os.environ.get("CUSTOMER_EMAIL_DOMAIN", "cliente.com")

    # Role whose branch list is restricted to assigned branches
    ADVISOR_ROLE = os.environ.get("ADVISOR_ROLE", "advisor")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
