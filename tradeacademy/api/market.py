"""
TradeAcademy - Market Data API

Quotes, daily history, company profiles, symbol search and top movers served
from the market data cache.
"""

from datetime import date

from flask import Blueprint, jsonify, request

from tradeacademy.api import int_arg, success
from tradeacademy.models import AssetType
from tradeacademy.services import get_services
from tradeacademy.utils.exceptions import ValidationError

market_bp = Blueprint("market", __name__)


def _date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)", field=name)


@market_bp.route("/quote/<symbol>", methods=["GET"])
def get_quote(symbol):
    """Latest quote, refreshed from the provider once the cached one is stale."""
    record = get_services().market_data.get_quote(symbol)
    return jsonify(success(record.to_dict())), 200


@market_bp.route("/history/<symbol>", methods=["GET"])
def get_history(symbol):
    """
    Daily bars for a symbol.

    Query parameters:
    - start: first day (YYYY-MM-DD)
    - end: last day (YYYY-MM-DD)
    """
    start, end = _date_arg("start"), _date_arg("end")
    if start and end and start > end:
        raise ValidationError("start must not be after end", field="start")

    market_data = get_services().market_data
    history = market_data.get_historical(symbol, start, end)
    return jsonify(
        success(history, symbol=market_data.normalize_symbol(symbol), results=len(history))
    ), 200


@market_bp.route("/profile/<symbol>", methods=["GET"])
def get_profile(symbol):
    return jsonify(success(get_services().market_data.get_company_profile(symbol))), 200


@market_bp.route("/search", methods=["GET"])
def search():
    query = (request.args.get("query") or "").strip()
    if not query:
        raise ValidationError("query is required", field="query")
    limit = int_arg("limit", 10, 50)
    results = get_services().market_data.search(query, limit)
    return jsonify(success(results, results=len(results))), 200


@market_bp.route("/movers", methods=["GET"])
def top_movers():
    asset_type = request.args.get("asset_type")
    if asset_type and asset_type not in {t.value for t in AssetType}:
        raise ValidationError(
            f"Unknown asset type {asset_type}",
            field="asset_type",
            details={"allowed": [t.value for t in AssetType]},
        )
    limit = int_arg("limit", 10, 50)
    return jsonify(success(get_services().market_data.get_top_movers(limit, asset_type))), 200
