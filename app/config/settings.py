"""
Application settings and configuration
"""
import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    # Application
    APP_NAME = "Baithaka Ghar Pricing"
    VERSION = "1.0.0"
    DEBUG = os.getenv("DEBUG", "True") == "True"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Local time used when serialising timestamps
    TIMEZONE = os.getenv("TIMEZONE", "Asia/Kolkata")

    # Security
    SECRET_KEY = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours

    # CORS
    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv(
            "ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if origin.strip()
    ]

    # Pagination
    DEFAULT_PAGE_SIZE = 20
    MAX_PAGE_SIZE = 100

    # Pricing
    MAX_PRICE = 1_000_000
    MAX_IMPORT_FILE_SIZE = 5 * 1024 * 1024  # 5 MB

    # Promotions
    ENABLE_PROMOTION_SCHEDULER = os.getenv("ENABLE_PROMOTION_SCHEDULER", "True") == "True"
    PROMOTION_SWEEP_INTERVAL_SECONDS = int(os.getenv("PROMOTION_SWEEP_INTERVAL_SECONDS", "300"))

settings = Settings()
