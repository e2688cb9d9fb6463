"""
Configuration utilities for the storefront ledger.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


class Config:
    """Configuration manager for the storefront ledger."""

    def __init__(self, env_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> None:
        """Initialize configuration.

        If an env_file path is provided, load environment variables from it and
        read settings from the environment. Otherwise only defaults are used, which
        keeps tests and previews independent of the host environment. Explicit
        overrides win over both.
        """
        self.env_file = env_file
        self._load_environment()
        self._config = self._load_config()
        if overrides:
            self._config.update(overrides)

    def _load_environment(self) -> None:
        """Load environment variables from explicit .env file if provided."""
        if not self.env_file:
            return
        env_path = Path(self.env_file)
        if env_path.exists():
            load_dotenv(env_path)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        return {
            # Core settings
            "log_level": self._get_str("LOG_LEVEL", default="INFO"),
            "log_file": self._get_str("LOG_FILE", default=""),
            # MongoDB order store
            "mongo_url": self._get_str("DB_CONNECTION_URL", default=""),
            "mongo_db": self._get_str("DB_NAME", default="STOREFRONT"),
            "orders_collection": self._get_str("ORDERS_COLLECTION", default="orders"),
            "counters_collection": self._get_str("COUNTERS_COLLECTION", default="counters"),
            "products_collection": self._get_str("PRODUCTS_COLLECTION", default="products"),
            # Storefront backend (gateway order creation, payment verification)
            "api_url": self._get_str("API_URL", default=""),
            "api_timeout": self._get_float("API_TIMEOUT", default=15.0),
            "widget_timeout": self._get_float("WIDGET_TIMEOUT", default=900.0),
            "gateway_key": self._get_str("RAZORPAY_KEY_ID", default=""),
            "currency": self._get_str("CURRENCY", default="INR"),
            # Tax settings
            "default_tax_rate": self._get_float("DEFAULT_TAX_RATE", default=18.0),
            "checkout_cgst_rate": self._get_float("CHECKOUT_CGST_RATE", default=2.5),
            "checkout_sgst_rate": self._get_float("CHECKOUT_SGST_RATE", default=2.5),
            "default_hsn": self._get_str("DEFAULT_HSN", default="1234"),
            # Shipping settings
            "free_shipping_threshold": self._get_float("FREE_SHIPPING_THRESHOLD", default=500.0),
            "shipping_fee": self._get_float("SHIPPING_FEE", default=50.0),
            # Invoice seller block
            "seller_name": self._get_str("SELLER_NAME", default="SRI BOGAT"),
            "seller_gstin": self._get_str("SELLER_GSTIN", default="29LWVPS2833P1Z0"),
            "support_email": self._get_str("SUPPORT_EMAIL", default="support@bogat.com"),
        }

    def _get_str(self, key: str, default: str = "") -> str:
        """Get string configuration value."""
        if self.env_file is None:
            return default
        return os.getenv(key, default)

    def _get_float(self, key: str, default: float = 0.0) -> float:
        """Get float configuration value."""
        if self.env_file is None:
            return default
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation."""
        return self._config[key]

    def __contains__(self, key: str) -> bool:
        """Check if configuration key exists."""
        return key in self._config
