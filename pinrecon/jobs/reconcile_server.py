"""HTTP entrypoint that triggers a venue pin reconciliation run."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict

from flask import Flask, jsonify, request

from pinrecon.core.config import ConfigError, ReconcileConfig, get_settings
from pinrecon.core.errors import RecordFetchError
from pinrecon.etl.report import build_error_report
from pinrecon.jobs.reconcile import build_components, reconcile_from_store

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings without touching the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "records_table": settings.records_table,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/fix-location-pins")
def fix_location_pins() -> Any:
    """
    Re-geocode venue addresses and rewrite their stored coordinates.
    No body is required. Optional JSON: {"ids": ["<record id>", ...]}
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    ids = payload.get("ids")
    if ids is not None:
        if not isinstance(ids, list) or not all(isinstance(i, str) and i.strip() for i in ids):
            return jsonify(build_error_report("ids must be a list of non-empty strings")), 400

    try:
        settings = get_settings()
        config = ReconcileConfig.from_settings(settings)
        provider, store = build_components(settings)
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return jsonify(build_error_report(exc)), 500

    logger.info("Starting location pin fix (ids=%s)", ids)
    try:
        run = reconcile_from_store(provider, store, config, ids=ids)
    except RecordFetchError as exc:
        logger.error("Location pin fix could not start: %s", exc)
        return jsonify(build_error_report(exc)), 500

    return jsonify(run.report()), 200


def main() -> None:
    """Bind on the PORT injected by the platform, falling back to WORKER_PORT."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)

    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
