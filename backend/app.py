import atexit
import logging
import os
from typing import Optional
from zoneinfo import ZoneInfo

from flask import Flask
from flask_cors import CORS

from db.sqlite_db import SheetStore

DB_PATH = os.environ.get("DB_PATH", "/data/app.db")
SHEET_NAME = os.environ.get("SHEET_NAME", "Sheet1")
DISPLAY_TIMEZONE = os.environ.get("DISPLAY_TIMEZONE", "UTC")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


def create_app(store: Optional[SheetStore] = None, sheet_name: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        allow_headers=["Content-Type"],
        methods=["GET", "POST", "OPTIONS"],
    )

    if store is None:
        store = SheetStore(DB_PATH).open()
        atexit.register(store.close)

    app.config["SHEET_STORE"] = store
    app.config["SHEET_NAME"] = sheet_name or SHEET_NAME
    app.config["DISPLAY_TIMEZONE"] = ZoneInfo(DISPLAY_TIMEZONE)

    # Register APIs (keep app.py as the central register)
    from apis.system_api import bp as system_bp
    from apis.teleport_api import bp as teleport_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(teleport_bp)

    return app


if __name__ == "__main__":
    create_app().run(
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
    )
