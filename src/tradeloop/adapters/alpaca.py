"""Alpaca REST adapter (paper or live endpoint)."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from tradeloop.adapters.base import (
    AdapterMessage,
    MarketDataHandler,
    OrderHandler,
    OrderStatusReport,
)
from tradeloop.domain.models import (
    EventKind,
    Fill,
    MarketEvent,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    OrderUpdate,
)
from tradeloop.errors import VenueError, VenueUnavailableError

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "new": OrderStatus.SUBMITTED,
    "accepted": OrderStatus.SUBMITTED,
    "pending_new": OrderStatus.SUBMITTED,
    "accepted_for_bidding": OrderStatus.SUBMITTED,
    "held": OrderStatus.SUBMITTED,
    "calculated": OrderStatus.SUBMITTED,
    "pending_cancel": OrderStatus.SUBMITTED,
    "pending_replace": OrderStatus.SUBMITTED,
    "replaced": OrderStatus.SUBMITTED,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "done_for_day": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "expired": OrderStatus.CANCELLED,
    "stopped": OrderStatus.CANCELLED,
    "suspended": OrderStatus.CANCELLED,
    "rejected": OrderStatus.REJECTED,
}


class AlpacaRequestRejected(VenueError):
    """Alpaca answered a request with a 4xx status."""

    def __init__(self, status_code: int, path: str, detail: str) -> None:
        super().__init__(f"Alpaca API error {status_code} for {path}: {detail}")
        self.status_code = status_code
        self.detail = detail


class AlpacaAdapter:
    """Exchange adapter over Alpaca's REST API with retry and rate-limit handling.

    Alpaca's REST endpoints are pull-based, so fills and latest trades are
    fetched in ``poll()``, which the live venue calls on every drain. Calls
    are throttled to ``poll_interval_seconds``.
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        base_url: str,
        data_url: str,
        instruments: Sequence[str] = (),
        timeout: int = 20,
        max_retries: int = 4,
        poll_interval_seconds: float = 1.0,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.instruments = list(instruments)
        self.timeout = timeout
        self.max_retries = max_retries
        self.poll_interval_seconds = poll_interval_seconds
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "APCA-API-KEY-ID": api_key,
                "APCA-API-SECRET-KEY": secret_key,
                "Content-Type": "application/json",
            }
        )
        self._clock = clock
        self._sleep = sleep
        self._order_handlers: list[OrderHandler] = []
        self._market_handlers: list[MarketDataHandler] = []
        self._venue_ids: dict[str, str] = {}
        self._client_ids: dict[str, str] = {}
        self._seen_fill_ids: set[str] = set()
        self._last_trade_ids: dict[str, str] = {}
        self._last_poll: float | None = None

    def subscribe_orders(self, handler: OrderHandler) -> None:
        self._order_handlers.append(handler)

    def subscribe_market_data(self, handler: MarketDataHandler) -> None:
        self._market_handlers.append(handler)

    def connect(self) -> None:
        self._request("GET", self.base_url, "/v2/account")

    def submit_order(self, order: Order) -> None:
        body: dict[str, Any] = {
            "symbol": self.normalize_symbol(order.instrument),
            "qty": str(order.quantity),
            "side": order.side.value,
            "type": order.order_type.value,
            "time_in_force": self._resolve_time_in_force(order.instrument),
            "client_order_id": order.order_id,
        }
        if order.order_type is OrderType.LIMIT and order.limit_price is not None:
            body["limit_price"] = str(order.limit_price)
        try:
            payload = self._request("POST", self.base_url, "/v2/orders", json=body)
        except AlpacaRequestRejected as exc:
            self._publish(OrderUpdate(order.order_id, OrderStatus.REJECTED, reason=exc.detail))
            return
        venue_order_id = str(payload.get("id", "")) or None
        if venue_order_id is not None:
            self._venue_ids[order.order_id] = venue_order_id
            self._client_ids[venue_order_id] = order.order_id
        status = _STATUS_MAP.get(str(payload.get("status", "new")).lower(), OrderStatus.SUBMITTED)
        if status is OrderStatus.REJECTED:
            self._publish(OrderUpdate(order.order_id, status, reason="rejected by Alpaca"))
            return
        self._publish(
            OrderUpdate(order.order_id, OrderStatus.SUBMITTED, venue_order_id=venue_order_id)
        )

    def cancel_order(self, order_id: str) -> None:
        venue_order_id = self._venue_ids.get(order_id)
        if venue_order_id is None:
            venue_order_id = self.query_order(order_id).venue_order_id
        if venue_order_id is None:
            raise AlpacaRequestRejected(404, "/v2/orders", f"unknown order {order_id}")
        self._request("DELETE", self.base_url, f"/v2/orders/{venue_order_id}")
        self._publish(OrderUpdate(order_id, OrderStatus.CANCELLED))

    def query_order(self, order_id: str) -> OrderStatusReport:
        try:
            payload = self._request(
                "GET",
                self.base_url,
                "/v2/orders:by_client_order_id",
                params={"client_order_id": order_id},
            )
        except AlpacaRequestRejected as exc:
            if exc.status_code == 404:
                return OrderStatusReport(order_id=order_id, status=None)
            raise
        venue_order_id = str(payload.get("id", "")) or None
        if venue_order_id is not None:
            self._venue_ids[order_id] = venue_order_id
            self._client_ids[venue_order_id] = order_id
        status = _STATUS_MAP.get(str(payload.get("status", "")).lower(), OrderStatus.SUBMITTED)
        fills: tuple[Fill, ...] = ()
        if self._parse_optional_float(payload.get("filled_qty")):
            fills = tuple(
                fill for fill in self._fetch_fills() if fill.order_id == order_id
            )
        return OrderStatusReport(
            order_id=order_id,
            status=status,
            fills=fills,
            venue_order_id=venue_order_id,
        )

    def poll(self) -> None:
        now = self._clock()
        if self._last_poll is not None and now - self._last_poll < self.poll_interval_seconds:
            return
        self._last_poll = now
        for fill in self._fetch_fills():
            if fill.fill_id in self._seen_fill_ids:
                continue
            self._seen_fill_ids.add(fill.fill_id)
            self._publish(fill)
        if not self._market_handlers:
            return
        for instrument in self.instruments:
            event = self._latest_trade(instrument)
            if event is None:
                continue
            for handler in self._market_handlers:
                handler(event)

    def _fetch_fills(self) -> list[Fill]:
        payload = self._request(
            "GET",
            self.base_url,
            "/v2/account/activities/FILL",
            params={"direction": "asc", "page_size": "100"},
        )
        fills: list[Fill] = []
        for item in payload if isinstance(payload, list) else []:
            venue_order_id = str(item.get("order_id", ""))
            quantity = self._parse_optional_float(item.get("qty"))
            price = self._parse_optional_float(item.get("price"))
            if quantity is None or price is None:
                continue
            fills.append(
                Fill(
                    fill_id=str(item.get("id", "")),
                    order_id=self._client_ids.get(venue_order_id, venue_order_id),
                    instrument=str(item.get("symbol", "")).upper(),
                    side=self._to_order_side(str(item.get("side", "buy"))),
                    quantity=abs(quantity),
                    price=price,
                    timestamp=self._parse_timestamp(item.get("transaction_time")),
                )
            )
        return fills

    def _latest_trade(self, instrument: str) -> MarketEvent | None:
        symbol = self.normalize_symbol(instrument)
        payload = self._request("GET", self.data_url, f"/v2/stocks/{symbol}/trades/latest")
        trade = payload.get("trade") if isinstance(payload, dict) else None
        if not isinstance(trade, dict):
            return None
        trade_id = str(trade.get("i", trade.get("t", "")))
        if self._last_trade_ids.get(instrument) == trade_id:
            return None
        self._last_trade_ids[instrument] = trade_id
        price = self._parse_optional_float(trade.get("p"))
        if price is None:
            return None
        size = self._parse_optional_float(trade.get("s"))
        payload_fields: dict[str, float] = {"price": price}
        if size is not None:
            payload_fields["size"] = size
        return MarketEvent(
            timestamp=self._parse_timestamp(trade.get("t")),
            instrument=instrument,
            kind=EventKind.TRADE,
            payload=payload_fields,
        )

    def _publish(self, message: AdapterMessage) -> None:
        for handler in self._order_handlers:
            handler(message)

    def _request(
        self,
        method: str,
        root: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        url = f"{root}{path}"
        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.request(
                    method=method,
                    url=url,
                    json=json,
                    params=params,
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self.max_retries:
                    break
                self._sleep(float(attempt))
                continue

            if response.status_code == 429:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Rate limit"
                    raise VenueUnavailableError(f"Alpaca API error 429 for {path}: {detail}")
                self._sleep(self._retry_after_seconds(response.headers, attempt))
                continue

            if response.status_code >= 500:
                if attempt == self.max_retries:
                    detail = response.text.strip() or "Server error"
                    raise VenueUnavailableError(
                        f"Alpaca API error {response.status_code} for {path}: {detail}"
                    )
                self._sleep(float(attempt))
                continue

            if response.status_code >= 400:
                detail = response.text.strip() or "Request rejected"
                raise AlpacaRequestRejected(response.status_code, path, detail)

            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise VenueError(f"Alpaca response for {path} was not valid JSON") from exc

        logger.warning("Alpaca request to %s failed after %d attempts", path, self.max_retries)
        raise VenueUnavailableError(f"Alpaca request failed for {path}: {last_error}")

    @staticmethod
    def normalize_symbol(symbol: str) -> str:
        normalized = symbol.strip().upper().replace("/", "").replace("-", "")
        if normalized.endswith("USDT") and len(normalized) >= 7:
            return f"{normalized[:-4]}USD"
        return normalized

    @staticmethod
    def _is_crypto_symbol(symbol: str) -> bool:
        normalized = AlpacaAdapter.normalize_symbol(symbol)
        return normalized.endswith("USD") and len(normalized) >= 6

    def _resolve_time_in_force(self, instrument: str) -> str:
        return "gtc" if self._is_crypto_symbol(instrument) else "day"

    @staticmethod
    def _to_order_side(value: str) -> OrderSide:
        if value.strip().lower() in {"sell", "sell_short"}:
            return OrderSide.SELL
        return OrderSide.BUY

    @staticmethod
    def _parse_timestamp(value: Any) -> datetime:
        if isinstance(value, str) and value.strip():
            text = value.strip().replace("Z", "+00:00")
            # Alpaca sends nanosecond precision; fromisoformat takes microseconds.
            if "." in text:
                head, _, tail = text.partition(".")
                zone = tail.lstrip("0123456789")
                digits = tail[: len(tail) - len(zone)]
                text = f"{head}.{digits[:6]}{zone}"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return datetime.now(tz=UTC)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        return datetime.now(tz=UTC)

    @staticmethod
    def _retry_after_seconds(
        headers: requests.structures.CaseInsensitiveDict,
        attempt: int,
    ) -> float:
        retry_after = headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 1.0)
            except ValueError:
                try:
                    dt = parsedate_to_datetime(retry_after)
                except (TypeError, ValueError):
                    dt = None
                if dt is not None:
                    if dt.tzinfo is None:
                        dt = dt.replace(tzinfo=UTC)
                    return max((dt - datetime.now(tz=UTC)).total_seconds(), 1.0)

        rate_reset = headers.get("X-RateLimit-Reset") or headers.get("x-ratelimit-reset")
        if rate_reset:
            try:
                return max(float(rate_reset) - datetime.now(tz=UTC).timestamp(), 1.0)
            except ValueError:
                pass

        return max(float(attempt), 1.0)

    @staticmethod
    def _parse_optional_float(value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return float(value)
        text = str(value).strip()
        if not text or text.lower() in {"none", "null"}:
            return None
        try:
            return float(text)
        except ValueError:
            return None
