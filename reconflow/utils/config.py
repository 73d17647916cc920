"""
Configuration management for the reconciliation service.
Supports environment variables for secure credential management.
"""
from pydantic_settings import BaseSettings
from typing import Optional
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "ReconFlow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "human"  # human | json

    # Database
    DATABASE_PATH: str = "./data/reconflow.db"

    # Object storage
    STORAGE_BACKEND: str = "local"  # local | s3
    UPLOAD_DIR: str = "./data/uploads"
    S3_BUCKET: str = "reconflow-documents"
    S3_ENDPOINT_URL: Optional[str] = None  # R2/MinIO compatible endpoints
    S3_REGION: str = "auto"
    S3_ACCESS_KEY_ID: Optional[str] = None
    S3_SECRET_ACCESS_KEY: Optional[str] = None
    PRESIGN_EXPIRY_SECONDS: int = 3600

    # AI Provider Configuration (Ollama via OpenAI-compatible API)
    LLM_ENABLED: bool = False
    OLLAMA_BASE_URL: str = "http://localhost:11434/v1"
    LLM_API_KEY: str = "ollama"
    LLM_MODEL: str = "llama3"
    LLM_TEMPERATURE: float = 0.1

    # Document Processing
    DEFAULT_PROCESSOR: str = "pattern-ocr"
    TESSERACT_PATH: Optional[str] = None
    POPPLER_PATH: Optional[str] = None
    MAX_FILE_SIZE_MB: int = 50

    # Pipelines
    PIPELINE_TIMEOUT_SECONDS: float = 300.0
    WORKFLOW_MAX_TRANSITIONS: int = 50
    SSE_HEARTBEAT_SECONDS: float = 30.0
    EVENT_QUEUE_SIZE: int = 100

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Matching rules for invoice/payment reconciliation
RECONCILIATION_RULES = {
    "amount_tolerance": 0.01,  # one cent
    "partial_match_threshold": 0.80,  # payment must cover 80% of the invoice
    "min_suggestion_confidence": 0.30,  # suggestions must score above this
    "auto_match_confidence": 0.80,
    "weights": {
        "exact_amount": 0.50,
        "partial_amount": 0.40,  # scaled by the match percentage
        "reference_in_description": 0.30,
        "vendor_name": 0.10,
        "within_30_days": 0.10,
        "within_60_days": 0.05,
    },
    "match_confidence": {
        "auto": 0.90,
        "manual": 1.0,
    },
    "discrepancy_severity": {
        "high": 1000.00,  # |discrepancy| above this
        "medium": 100.00,
    },
    "overdue_high_days": 30,
    "unmatched_payment_high_amount": 10000.00,
}

# Required fields per extracted document type
VALIDATION_RULES = {
    "invoice": [
        ("invoice_number", "Missing invoice number"),
        ("amount", "Invalid amount"),
        ("vendor_name", "Missing vendor name"),
    ],
    "payment": [
        ("payment_reference", "Missing payment reference"),
        ("amount", "Invalid amount"),
    ],
    "remittance": [
        ("remittance_number", "Missing remittance number"),
        ("jobs", "No jobs found in remittance"),
    ],
}

# Job status and progress checkpoints reported around each workflow step
JOB_PROGRESS = {
    "upload": {"status": "uploading", "start": 10, "done": 20},
    "classify": {"status": "processing", "start": 30, "done": 30},
    "extract": {"status": "extracting", "start": 50, "done": 70},
    "validate": {"status": "validating", "start": 80, "done": 90},
    "save": {"status": "saving", "start": None, "done": None},
}
