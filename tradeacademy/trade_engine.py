"""
Virtual Trading Engine

Executes simulated market orders against a portfolio's cash and holdings,
keeps the performance snapshot current and records every fill as an
immutable transaction.

Every order is validated completely before the portfolio is touched, so a
rejected order leaves cash, holdings and history exactly as they were.
Portfolio rows carry a version counter; a concurrent writer makes the
commit fail instead of silently overwriting the other request's fill.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func

from tradeacademy.models import (
    AchievementCriteria, Holding, Portfolio, PortfolioStatus, TradeType,
    Transaction, User, WatchlistItem, db, utcnow
)
from tradeacademy.utils.exceptions import (
    BusinessLogicError, ConflictError, InsufficientFundsError,
    InsufficientSharesError, NotFoundError, ValidationError
)
from tradeacademy.utils.logger import get_logger, log_trade_event

logger = get_logger(__name__)

CENTS = Decimal("0.01")
BASIS = Decimal("0.0001")
PRICE_SCALE = Decimal("0.000001")

TIMEFRAMES = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "yearly": timedelta(days=365),
}


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


class TradeEngine:
    """
    Portfolio trade execution and valuation.

    Args:
        market_data: quote cache used as the price oracle
        achievements: optional tracker notified about trading milestones
        default_starting_balance: cash given to lazily created portfolios
        max_quantity: upper bound for a single order
    """

    def __init__(
        self,
        market_data,
        achievements=None,
        default_starting_balance: Union[float, Decimal] = 100000,
        max_quantity: int = 1000000,
    ):
        self.market_data = market_data
        self.achievements = achievements
        self.default_starting_balance = _money(Decimal(str(default_starting_balance)))
        self.max_quantity = max_quantity

    # Portfolio lifecycle

    def get_or_create_portfolio(self, user: User) -> Portfolio:
        """Return the user's oldest active portfolio, creating one if needed."""
        portfolio = (
            Portfolio.query.filter_by(user_id=user.id, status=PortfolioStatus.ACTIVE)
            .order_by(Portfolio.created_at.asc())
            .first()
        )
        if portfolio is None:
            portfolio = self.create_portfolio(user)
        return portfolio

    def create_portfolio(
        self,
        user: User,
        name: str = "Default Portfolio",
        initial_balance: Optional[Decimal] = None,
        description: Optional[str] = None,
    ) -> Portfolio:
        balance = _money(
            Decimal(str(initial_balance))
            if initial_balance is not None
            else self.default_starting_balance
        )
        if balance <= 0:
            raise ValidationError(
                "Initial balance must be positive", field="initial_balance"
            )

        portfolio = Portfolio(
            user_id=user.id,
            name=name,
            description=description,
            cash_balance=balance,
            initial_balance=balance,
            total_value=balance,
            total_profit_loss=Decimal("0"),
            total_profit_loss_percentage=Decimal("0"),
            performance_updated_at=utcnow(),
            status=PortfolioStatus.ACTIVE,
        )
        db.session.add(portfolio)
        db.session.commit()

        logger.info(
            f"Portfolio created for user {user.id}",
            extra={"portfolio_id": str(portfolio.id), "initial_balance": float(balance)},
        )
        return portfolio

    def get_portfolio(self, user: User, portfolio_id) -> Portfolio:
        portfolio = db.session.get(Portfolio, portfolio_id)
        if (
            portfolio is None
            or portfolio.user_id != user.id
            or portfolio.status == PortfolioStatus.DELETED
        ):
            raise NotFoundError("Portfolio")
        return portfolio

    def list_portfolios(self, user: User) -> List[Portfolio]:
        return (
            Portfolio.query.filter(
                Portfolio.user_id == user.id,
                Portfolio.status != PortfolioStatus.DELETED,
            )
            .order_by(Portfolio.created_at.asc())
            .all()
        )

    def delete_portfolio(self, portfolio: Portfolio) -> None:
        """Soft delete: the row and its history stay for auditing."""
        portfolio.status = PortfolioStatus.DELETED
        db.session.commit()
        logger.info(f"Portfolio {portfolio.id} marked deleted")

    # Trading

    def execute_trade(
        self, portfolio: Portfolio, symbol: str, trade_type: str, quantity: int
    ) -> Transaction:
        """
        Execute a market order at the current oracle price.

        Raises:
            ValidationError: malformed order
            BusinessLogicError: portfolio is not active
            SymbolNotFoundError: no quote for the symbol
            InsufficientFundsError: buy costs more than the cash balance
            InsufficientSharesError: sell exceeds the shares held
            MarketDataError: the price oracle is unreachable
        """
        symbol = self.market_data.normalize_symbol(symbol)
        trade_type = self._parse_trade_type(trade_type)
        quantity = self._parse_quantity(quantity)

        if portfolio.status != PortfolioStatus.ACTIVE:
            raise BusinessLogicError(
                "Trades can only be placed on an active portfolio",
                code="PORTFOLIO_INACTIVE",
                details={"status": portfolio.status.value},
            )

        # Cash is kept at the price scale so every fill moves it by exactly price x quantity
        price = self.market_data.get_price(symbol).quantize(PRICE_SCALE, rounding=ROUND_HALF_UP)
        trade_amount = price * quantity
        cash = Decimal(portfolio.cash_balance)
        holding = portfolio.holding_for(symbol)

        if trade_type == TradeType.BUY:
            if cash < trade_amount:
                raise InsufficientFundsError(trade_amount, cash, symbol=symbol)

            portfolio.cash_balance = cash - trade_amount
            if holding is not None:
                old_qty = holding.quantity
                old_avg = Decimal(holding.average_buy_price)
                new_qty = old_qty + quantity
                holding.average_buy_price = (old_avg * old_qty + price * quantity) / new_qty
                holding.quantity = new_qty
                holding.current_price = price
            else:
                portfolio.holdings.append(
                    Holding(
                        symbol=symbol,
                        quantity=quantity,
                        average_buy_price=price,
                        current_price=price,
                    )
                )
        else:
            held = holding.quantity if holding is not None else 0
            if holding is None or held < quantity:
                raise InsufficientSharesError(symbol, quantity, held)

            portfolio.cash_balance = cash + trade_amount
            if held == quantity:
                portfolio.holdings.remove(holding)
            else:
                holding.quantity = held - quantity
                holding.current_price = price

        transaction = Transaction(
            portfolio=portfolio,
            type=trade_type,
            symbol=symbol,
            quantity=quantity,
            price=price,
            total=trade_amount,
            timestamp=utcnow(),
        )
        db.session.add(transaction)

        self.update_performance(portfolio)
        completed = self._report_progress(portfolio)
        db.session.commit()

        if completed:
            self.achievements.announce_completed(portfolio.user, completed)

        log_trade_event(
            "executed",
            portfolio_id=str(portfolio.id),
            user_id=str(portfolio.user_id),
            symbol=symbol,
            side=trade_type.value,
            quantity=quantity,
            price=float(price),
            total=float(trade_amount),
            cash_balance=float(portfolio.cash_balance),
        )
        return transaction

    def update_performance(self, portfolio: Portfolio) -> None:
        """Recompute total value and profit/loss against the recorded starting balance."""
        total_value = _money(Decimal(portfolio.cash_balance) + portfolio.holdings_value)
        initial = Decimal(portfolio.initial_balance)
        profit_loss = total_value - initial

        portfolio.total_value = total_value
        portfolio.total_profit_loss = profit_loss
        portfolio.total_profit_loss_percentage = (
            (profit_loss / initial * 100).quantize(BASIS, rounding=ROUND_HALF_UP)
            if initial
            else Decimal("0")
        )
        portfolio.performance_updated_at = utcnow()

    def revalue(self, portfolio: Portfolio) -> Dict[str, Any]:
        """Refresh every holding's price from the cache and store a new snapshot."""
        for holding in portfolio.holdings:
            holding.current_price = self.market_data.get_price(holding.symbol)

        self.update_performance(portfolio)
        db.session.commit()

        invested = sum((h.cost_basis for h in portfolio.holdings), Decimal("0"))
        return {
            "portfolio_id": str(portfolio.id),
            "cash_balance": float(portfolio.cash_balance),
            "invested": float(invested),
            "holdings_value": float(portfolio.holdings_value),
            "total_value": float(portfolio.total_value),
            "total_profit_loss": float(portfolio.total_profit_loss),
            "total_profit_loss_percentage": float(portfolio.total_profit_loss_percentage),
            "holdings": [h.to_dict() for h in portfolio.holdings],
            "updated_at": portfolio.performance_updated_at.isoformat(),
        }

    def performance_history(
        self, portfolio: Portfolio, timeframe: str = "monthly", now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Daily end-of-day portfolio values over ``timeframe``.

        Values are rebuilt by replaying transactions from the starting balance;
        each position is marked at the last traded price known at that day's
        close, or the current cached price for the final day.
        """
        if timeframe not in TIMEFRAMES:
            raise ValidationError(
                f"Unknown timeframe {timeframe}",
                field="timeframe",
                details={"allowed": sorted(TIMEFRAMES)},
            )

        now = now or utcnow()
        first_day = (now - TIMEFRAMES[timeframe]).date()
        last_day = now.date()
        current_prices = {
            h.symbol: Decimal(h.current_price)
            for h in portfolio.holdings
            if h.current_price is not None
        }

        transactions = sorted(portfolio.transactions, key=lambda t: t.timestamp)
        cash = Decimal(portfolio.initial_balance)
        positions: Dict[str, int] = defaultdict(int)
        last_price: Dict[str, Decimal] = {}
        index = 0

        history = []
        day = first_day
        while day <= last_day:
            while index < len(transactions) and transactions[index].timestamp.date() <= day:
                tx = transactions[index]
                total = Decimal(tx.total)
                if tx.type == TradeType.BUY:
                    cash -= total
                    positions[tx.symbol] += tx.quantity
                else:
                    cash += total
                    positions[tx.symbol] -= tx.quantity
                last_price[tx.symbol] = Decimal(tx.price)
                index += 1

            marks = dict(last_price)
            if day == last_day:
                marks.update(current_prices)
            value = cash + sum(
                (qty * marks.get(symbol, Decimal("0")) for symbol, qty in positions.items() if qty),
                Decimal("0"),
            )
            history.append({"date": day.isoformat(), "value": float(_money(value))})
            day += timedelta(days=1)

        return history

    def list_transactions(
        self,
        user: User,
        portfolio_id=None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        trade_type: Optional[str] = None,
        symbol: Optional[str] = None,
        limit: int = 50,
    ) -> List[Transaction]:
        query = Transaction.query.join(Portfolio).filter(Portfolio.user_id == user.id)
        if portfolio_id is not None:
            query = query.filter(Transaction.portfolio_id == portfolio_id)
        if start_date:
            query = query.filter(
                Transaction.timestamp >= datetime.combine(start_date, datetime.min.time())
            )
        if end_date:
            query = query.filter(
                Transaction.timestamp < datetime.combine(end_date + timedelta(days=1), datetime.min.time())
            )
        if trade_type:
            query = query.filter(Transaction.type == self._parse_trade_type(trade_type))
        if symbol:
            query = query.filter(Transaction.symbol == self.market_data.normalize_symbol(symbol))

        return query.order_by(Transaction.timestamp.desc()).limit(limit).all()

    # Watchlist

    def add_to_watchlist(self, portfolio: Portfolio, symbol: str) -> WatchlistItem:
        symbol = self.market_data.normalize_symbol(symbol)
        if any(item.symbol == symbol for item in portfolio.watchlist):
            raise ConflictError(
                "Symbol already in watchlist",
                code="WATCHLIST_DUPLICATE",
                details={"symbol": symbol},
            )

        # Unknown symbols are rejected through the quote lookup
        self.market_data.get_quote(symbol)

        item = WatchlistItem(symbol=symbol, added_at=utcnow())
        portfolio.watchlist.append(item)
        db.session.commit()
        return item

    def remove_from_watchlist(self, portfolio: Portfolio, symbol: str) -> None:
        symbol = self.market_data.normalize_symbol(symbol)
        for item in portfolio.watchlist:
            if item.symbol == symbol:
                portfolio.watchlist.remove(item)
                db.session.commit()
                return
        raise NotFoundError("Watchlist symbol", details={"symbol": symbol})

    def watchlist_quotes(self, portfolio: Portfolio) -> List[Dict[str, Any]]:
        return [
            {"symbol": item.symbol, "added_at": item.added_at.isoformat(),
             "quote": self.market_data.get_quote(item.symbol).to_dict()}
            for item in portfolio.watchlist
        ]

    # Helpers

    def _parse_trade_type(self, trade_type) -> TradeType:
        if isinstance(trade_type, TradeType):
            return trade_type
        try:
            return TradeType(str(trade_type).lower())
        except ValueError:
            raise ValidationError(
                "Trade type must be 'buy' or 'sell'",
                field="type",
                details={"type": trade_type},
            )

    def _parse_quantity(self, quantity) -> int:
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("Quantity must be a whole number", field="quantity")
        if quantity <= 0 or quantity > self.max_quantity:
            raise ValidationError(
                "Quantity out of range",
                field="quantity",
                details={"min": 1, "max": self.max_quantity},
            )
        return quantity

    def _report_progress(self, portfolio: Portfolio) -> List[Any]:
        """Feed trading milestones to the tracker; returns progress completed by this trade."""
        if self.achievements is None:
            return []

        user = portfolio.user
        now = utcnow()
        trade_count = (
            db.session.query(func.count(Transaction.id))
            .join(Portfolio)
            .filter(Portfolio.user_id == portfolio.user_id)
            .scalar()
        )
        events = [
            (AchievementCriteria.TRADE_VOLUME, trade_count),
            (AchievementCriteria.PORTFOLIO_DIVERSITY, len(portfolio.holdings)),
        ]
        if portfolio.total_profit_loss > 0:
            events.append((AchievementCriteria.PROFIT_TARGET, float(portfolio.total_profit_loss)))

        touched = []
        for criteria, value in events:
            touched.extend(
                self.achievements.record_event(user, criteria, value, commit=False, now=now)
            )
        return [p for p in touched if p.completed_at == now]
