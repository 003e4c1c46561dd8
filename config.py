"""Server settings for the order engine Flask app."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from ordercore.services.logging import log_event


DEFAULT_SETTINGS = {
    "CURRENCY": "IRR",
    "SHIPPING_PRICE": "50000",
    "FREE_SHIPPING_THRESHOLD": "500000",
    "TAX_RATE": "0.09",
    "PAYMENT_METHODS": "online,cod,wallet",
    "STOCK_RETRY_ATTEMPTS": 3,
    "ORDER_NUMBER_PREFIX": "WF",
    "PAYMENT_GATEWAY": "fake",
    "PAYMENT_GATEWAY_TIMEOUT": 10,
}


@dataclass
class ServerConfig:
    """Values the HTTP layer needs; engine settings live in settings.json."""

    secret_key: str
    admin_token: str
    host: str
    port: int
    root: Path

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @classmethod
    def load(cls, root: Path | None = None) -> "ServerConfig":
        """Build from the environment and make sure data/settings.json exists."""

        config = cls(
            secret_key=os.environ.get("ORDERCORE_SECRET_KEY", "ordercore-dev-secret"),
            admin_token=os.environ.get("ORDERCORE_ADMIN_TOKEN", ""),
            host=os.environ.get("ORDERCORE_HOST", "0.0.0.0"),
            port=int(os.environ.get("ORDERCORE_PORT", "5000")),
            root=Path(root) if root else Path(__file__).resolve().parent,
        )
        config.data_dir.mkdir(parents=True, exist_ok=True)

        if not config.settings_file.exists():
            config.settings_file.write_text(
                json.dumps(DEFAULT_SETTINGS, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            log_event("info", "config.settings_created", path=str(config.settings_file))
        if not config.admin_token:
            log_event("warning", "config.admin_token_missing")

        return config
