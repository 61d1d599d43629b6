#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Settings - Centralized configuration management
"""

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings

from .constants import (
    DEFAULT_JOB_TYPE,
    BATCH_SIZE_DEFAULT,
    BATCH_SIZE_MIN,
    BATCH_SIZE_MAX,
    BATCH_DELAY_SECONDS,
    BATCH_RETRY_DELAY_SECONDS,
    NETWORK_RETRY_DELAY_SECONDS,
    NETWORK_RETRY_MAX_DELAY_SECONDS,
    MAX_CONSECUTIVE_REJECTIONS,
    POLL_INTERVAL_SECONDS,
    POLL_INTERVAL_WORDPRESS_SECONDS,
    POLL_SAFETY_TIMEOUT_SECONDS,
    REFRESH_DELAY_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
    CHUNK_SIZE_DEFAULT,
    OVERLAP_PERCENT_DEFAULT,
    STATE_DIR,
    LOG_FILE,
)


# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings"""

    # ========== Endpoint ==========
    ajax_url: str = "http://localhost/wp-admin/admin-ajax.php"
    ajax_nonce: str = ""
    request_timeout_seconds: float = REQUEST_TIMEOUT_SECONDS

    # ========== Job ==========
    job_type: str = DEFAULT_JOB_TYPE
    execution_mode: str = "client_stepped"  # client_stepped | queue
    batch_size: int = Field(default=BATCH_SIZE_DEFAULT, ge=BATCH_SIZE_MIN, le=BATCH_SIZE_MAX)
    images_only: bool = False
    chunk_size: int = CHUNK_SIZE_DEFAULT
    overlap_percent: int = OVERLAP_PERCENT_DEFAULT

    # ========== Batch loop ==========
    batch_delay_seconds: float = BATCH_DELAY_SECONDS
    batch_retry_delay_seconds: float = BATCH_RETRY_DELAY_SECONDS
    network_retry_delay_seconds: float = NETWORK_RETRY_DELAY_SECONDS
    network_retry_max_delay_seconds: float = NETWORK_RETRY_MAX_DELAY_SECONDS
    max_consecutive_rejections: int = MAX_CONSECUTIVE_REJECTIONS

    # ========== Status polling ==========
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    poll_interval_wordpress_seconds: float = POLL_INTERVAL_WORDPRESS_SECONDS
    poll_safety_timeout_seconds: float = POLL_SAFETY_TIMEOUT_SECONDS
    refresh_delay_seconds: float = REFRESH_DELAY_SECONDS

    # ========== Directories ==========
    state_dir: Path = BASE_DIR / STATE_DIR

    # ========== Logging ==========
    log_level: str = "INFO"
    log_file: Path = BASE_DIR / LOG_FILE

    class Config:
        env_file = str(BASE_DIR / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields from .env that aren't defined in model

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.execution_mode not in ("client_stepped", "queue"):
            raise ValueError(f"Unsupported execution mode: {self.execution_mode}")
        self.state_dir.mkdir(exist_ok=True, parents=True)

    def executor_options(self) -> dict:
        """Options forwarded to the batch executor on every call"""
        return {
            "chunk_size": self.chunk_size,
            "overlap_percent": self.overlap_percent,
        }

    def print_config(self):
        """Print configuration summary"""
        print("\n" + "="*70)
        print("CONFIGURATION")
        print("="*70)
        print(f"Endpoint:        {self.ajax_url}")
        print(f"Job Type:        {self.job_type}")
        print(f"Mode:            {self.execution_mode}")
        print(f"Batch Size:      {self.batch_size}")
        print(f"Images Only:     {self.images_only}")
        print(f"Poll Interval:   {self.poll_interval_seconds}s")
        print(f"State Dir:       {self.state_dir}")
        print(f"Log File:        {self.log_file} ({self.log_level})")
        print("="*70 + "\n")


# Global settings instance
settings = Settings()
