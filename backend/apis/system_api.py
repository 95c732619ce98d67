from flask import Blueprint, current_app, jsonify

bp = Blueprint("system_api", __name__)


@bp.get("/health")
def health():
    store = current_app.config["SHEET_STORE"]
    return jsonify(
        {
            "ok": not store.closed,
            "sheet": current_app.config["SHEET_NAME"],
        }
    )
