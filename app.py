"""Flask application exposing the order engine."""

from __future__ import annotations

from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify

from config import ServerConfig
from ordercore.config import AppConfig, load_env
from ordercore.db import init_db, make_engine, make_session_factory
from ordercore.services.cache import InProcessCache
from ordercore.services.catalog_service import CatalogService
from ordercore.services.errors import OrderError
from ordercore.services.inventory import InventoryLedger
from ordercore.services.logging import log_event, set_log_level
from ordercore.services.notifications import StoredNotifier
from ordercore.services.order_service import OrderService
from ordercore.services.payment_gateway import build_gateway
from ordercore.services.pricing import PricingEngine
from routes import admin, api


def build_components(cfg: AppConfig) -> Dict[str, Any]:
    engine = make_engine(cfg.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)
    cache = InProcessCache(ttl_seconds=cfg.cache_ttl_seconds)
    order_service = OrderService(
        session_factory,
        pricing=PricingEngine.from_config(cfg),
        ledger=InventoryLedger(max_attempts=cfg.stock_retry_attempts),
        notifier=StoredNotifier(session_factory),
        cache=cache,
        gateway=build_gateway(cfg),
        payment_methods=cfg.payment_methods,
        order_number_prefix=cfg.order_number_prefix,
    )
    return {
        "engine": engine,
        "session_factory": session_factory,
        "cache": cache,
        "order_service": order_service,
        "catalog_service": CatalogService(session_factory, cache=cache),
    }


def _handle_order_error(exc: OrderError):
    level = "error" if exc.status_code >= 500 else "info"
    log_event(level, "http.order_error", code=exc.code, status=exc.status_code, message=exc.message)
    return jsonify(exc.to_dict()), exc.status_code


def create_app(
    server_config: Optional[ServerConfig] = None,
    app_config: Optional[AppConfig] = None,
    components: Optional[Dict[str, Any]] = None,
) -> Flask:
    load_dotenv()
    server_config = server_config or ServerConfig.load()
    app_config = app_config or load_env(server_config.settings_file)
    set_log_level(app_config.log_level)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = server_config.secret_key
    app.config["ORDERCORE_SERVER"] = server_config
    app.config["ORDERCORE_CONFIG"] = app_config
    app.extensions["ordercore_components"] = components or build_components(app_config)

    app.register_error_handler(OrderError, _handle_order_error)
    app.register_blueprint(api.api_bp)
    app.register_blueprint(admin.admin_bp)

    return app


def main() -> None:
    app = create_app()
    server = app.config["ORDERCORE_SERVER"]
    app.run(host=server.host, port=server.port, debug=False)


if __name__ == "__main__":
    main()
