"""
TradeAcademy - Virtual Trading API

Portfolios, order execution, transaction history and watchlists.
"""

from datetime import date

from flask import Blueprint, jsonify, request
from flask_jwt_extended import current_user, jwt_required

from tradeacademy.api import int_arg, load_json, parse_uuid, success
from tradeacademy.schemas import PortfolioSchema, TradeSchema, WatchlistSchema
from tradeacademy.services import get_services
from tradeacademy.utils.exceptions import ValidationError
from tradeacademy.utils.logger import get_logger

trading_bp = Blueprint("trading", __name__)
logger = get_logger(__name__)


def _portfolio(portfolio_id=None):
    engine = get_services().trade_engine
    if portfolio_id is None:
        return engine.get_or_create_portfolio(current_user)
    return engine.get_portfolio(current_user, parse_uuid(portfolio_id, "portfolio_id"))


def _parse_date(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)", field=name)


@trading_bp.route("/portfolio", methods=["GET"])
@jwt_required()
def get_default_portfolio():
    """Current user's default portfolio, created on first access."""
    portfolio = _portfolio()
    return jsonify(success({"portfolio": portfolio.to_dict()})), 200


@trading_bp.route("/portfolios", methods=["GET"])
@jwt_required()
def list_portfolios():
    portfolios = get_services().trade_engine.list_portfolios(current_user)
    return jsonify(
        success([p.to_dict() for p in portfolios], results=len(portfolios))
    ), 200


@trading_bp.route("/portfolios", methods=["POST"])
@jwt_required()
def create_portfolio():
    """
    Open an additional portfolio.

    Expects:
    {
        "name": "Growth",
        "description": "optional",
        "initial_balance": 50000
    }
    """
    data = load_json(PortfolioSchema())
    portfolio = get_services().trade_engine.create_portfolio(
        current_user,
        name=data["name"],
        initial_balance=data.get("initial_balance"),
        description=data.get("description"),
    )
    return jsonify(success({"portfolio": portfolio.to_dict()})), 201


@trading_bp.route("/portfolios/<uuid:portfolio_id>", methods=["GET"])
@jwt_required()
def get_portfolio(portfolio_id):
    include = request.args.get("include_transactions", "false").lower() == "true"
    portfolio = _portfolio(portfolio_id)
    return jsonify(
        success({"portfolio": portfolio.to_dict(include_transactions=include)})
    ), 200


@trading_bp.route("/portfolios/<uuid:portfolio_id>", methods=["DELETE"])
@jwt_required()
def delete_portfolio(portfolio_id):
    get_services().trade_engine.delete_portfolio(_portfolio(portfolio_id))
    return "", 204


@trading_bp.route("/portfolios/<uuid:portfolio_id>/performance", methods=["GET"])
@jwt_required()
def portfolio_performance(portfolio_id):
    """Revalue holdings at current prices and return the snapshot."""
    portfolio = _portfolio(portfolio_id)
    return jsonify(success(get_services().trade_engine.revalue(portfolio))), 200


@trading_bp.route("/performance", methods=["GET"])
@jwt_required()
def performance_history():
    """
    Daily portfolio value history.

    Query parameters:
    - timeframe: daily, weekly, monthly (default) or yearly
    - portfolio_id: defaults to the user's default portfolio
    """
    timeframe = request.args.get("timeframe", "monthly")
    portfolio = _portfolio(request.args.get("portfolio_id"))
    history = get_services().trade_engine.performance_history(portfolio, timeframe)
    return jsonify(
        success(history, timeframe=timeframe, portfolio_id=str(portfolio.id))
    ), 200


@trading_bp.route("/trade", methods=["POST"])
@jwt_required()
def execute_trade():
    """
    Execute a market order at the current price.

    Expects:
    {
        "symbol": "AAPL",
        "type": "buy|sell",
        "quantity": 10,
        "portfolio_id": "optional uuid"
    }
    """
    data = load_json(TradeSchema())
    engine = get_services().trade_engine
    portfolio = _portfolio(data.get("portfolio_id"))

    transaction = engine.execute_trade(
        portfolio, data["symbol"], data["type"], data["quantity"]
    )
    return jsonify(
        success(
            {"portfolio": portfolio.to_dict(), "transaction": transaction.to_dict()},
            message="Trade executed successfully",
        )
    ), 200


@trading_bp.route("/transactions", methods=["GET"])
@jwt_required()
def list_transactions():
    """
    Transaction history across the user's portfolios.

    Query parameters: start_date, end_date, type, symbol, portfolio_id, limit
    """
    limit = int_arg("limit", 50, 500)

    transactions = get_services().trade_engine.list_transactions(
        current_user,
        portfolio_id=parse_uuid(request.args.get("portfolio_id"), "portfolio_id"),
        start_date=_parse_date("start_date"),
        end_date=_parse_date("end_date"),
        trade_type=request.args.get("type"),
        symbol=request.args.get("symbol"),
        limit=limit,
    )
    return jsonify(
        success([t.to_dict() for t in transactions], results=len(transactions))
    ), 200


@trading_bp.route("/watchlist", methods=["GET"])
@jwt_required()
def get_watchlist():
    portfolio = _portfolio(request.args.get("portfolio_id"))
    return jsonify(success(get_services().trade_engine.watchlist_quotes(portfolio))), 200


@trading_bp.route("/watchlist", methods=["POST"])
@jwt_required()
def add_to_watchlist():
    data = load_json(WatchlistSchema())
    portfolio = _portfolio(data.get("portfolio_id"))
    item = get_services().trade_engine.add_to_watchlist(portfolio, data["symbol"])
    return jsonify(
        success({"symbol": item.symbol, "watchlist": [w.symbol for w in portfolio.watchlist]})
    ), 201


@trading_bp.route("/watchlist/<symbol>", methods=["DELETE"])
@jwt_required()
def remove_from_watchlist(symbol):
    portfolio = _portfolio(request.args.get("portfolio_id"))
    get_services().trade_engine.remove_from_watchlist(portfolio, symbol)
    return "", 204
