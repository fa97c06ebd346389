"""Application configuration loaded from the environment."""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


class Config:
    """Base configuration."""

    SECRET_KEY = os.environ.get("SECRET_KEY") or "dev-secret-change-me"
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or "sqlite:///" + os.path.join(
        basedir, "appliance_rental.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Payments (Stripe)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "inr")

    # Object storage (S3)
    AWS_S3_BUCKET = os.environ.get("AWS_S3_BUCKET", "appliance-rental-images")

    # Rentals shorter than this are refused at checkout
    RENTAL_MIN_DAYS = int(os.environ.get("RENTAL_MIN_DAYS", 30))
    # Upper bound for one rental unit of work (PostgreSQL statement_timeout)
    RENTAL_TX_TIMEOUT_MS = int(os.environ.get("RENTAL_TX_TIMEOUT_MS", 5000))

    AUTH_TOKEN_MAX_AGE = int(os.environ.get("AUTH_TOKEN_MAX_AGE", 86400))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "testing-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    PAYMENT_CURRENCY = "inr"
    AWS_S3_BUCKET = "appliance-rental-test"
    RENTAL_MIN_DAYS = 30
    LOG_LEVEL = "DEBUG"
