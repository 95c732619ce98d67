import logging

from flask import Blueprint, current_app, jsonify, request

from services.records import format_timestamp
from services.services import (
    ServiceError,
    ValidationError,
    add_record,
    get_destination,
    list_destinations,
    report_down,
    update_record,
)

log = logging.getLogger(__name__)

bp = Blueprint("teleport_api", __name__)


def _store_args():
    return {
        "store": current_app.config["SHEET_STORE"],
        "sheet_name": current_app.config["SHEET_NAME"],
    }


def _tz():
    return current_app.config.get("DISPLAY_TIMEZONE")


def _json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


def _fail(e: ServiceError):
    return jsonify({"success": False, "error": str(e)}), e.status_code


@bp.get("/")
def list_games():
    try:
        dests = list_destinations(tz=_tz(), **_store_args())
    except ServiceError as e:
        log.error("list_failed err=%s", e)
        return jsonify({"error": "Failed to fetch game data", "message": str(e)}), e.status_code
    except Exception as e:
        log.exception("list_failed")
        return jsonify({"error": "Failed to fetch game data", "message": str(e)}), 500

    tz = _tz()
    return jsonify([d.to_dict(tz) for d in dests])


def _update_game(payload):
    patch = {k: v for k, v in payload.items() if k != "action"}
    update_record(part_key=payload.get("part_key"), patch=patch, **_store_args())
    return jsonify({"success": True, "message": "Game data updated successfully"})


def _add_game(payload):
    fields = {k: v for k, v in payload.items() if k != "action"}
    add_record(fields=fields, **_store_args())
    return jsonify({"success": True, "message": "Game data added successfully"})


def _get_game(payload):
    dest = get_destination(part_key=payload.get("part_key"), tz=_tz(), **_store_args())
    return jsonify(dest.to_dict(_tz()))


def _update_server_down(payload):
    part_key = payload.get("part_key")
    if part_key is None or str(part_key) == "":
        raise ValidationError("part_key is required")

    title = payload.get("game_title")
    result = report_down(
        part_key=str(part_key),
        game_title=None if title is None else str(title),
        **_store_args(),
    )
    if not result.success:
        return jsonify({"success": False, "message": result.message})

    out = {"success": True, "message": result.message, "new_count": result.new_count}
    if result.last_down_vote is not None:
        out["last_down_vote"] = format_timestamp(result.last_down_vote, _tz())
    return jsonify(out)


ACTIONS = {
    "update_game": _update_game,
    "add_game": _add_game,
    "get_game": _get_game,
    "update_server_down": _update_server_down,
}


@bp.post("/")
def dispatch():
    try:
        payload = _json_body()
        action = payload.get("action")
        handler = ACTIONS.get(action) if isinstance(action, str) else None
        if handler is None:
            raise ValidationError(f"Invalid action: {action}")
        return handler(payload)
    except ServiceError as e:
        log.warning("post_failed status=%s err=%s", e.status_code, e)
        return _fail(e)
    except Exception as e:
        log.exception("post_failed")
        return jsonify({"success": False, "error": str(e)}), 500
