"""MongoDB repository for orders, the order-number counter and product lookups."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

from ..errors import OrderNotFoundError, OrderStoreError, ValidationError
from ..utils.config import Config
from ..utils.logging import get_logger
from .ledger import CheckoutTaxRates, as_number
from .totals import ShippingPolicy, cart_subtotal, checkout_totals

logger = get_logger(__name__)

ORDER_NUMBER_COUNTER = "orderNumber"
# Declared and recomputed totals are compared at paisa precision
TOTAL_TOLERANCE = 0.005


def _as_object_id(value: Any) -> Any:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


class OrderRepository:
    def __init__(
        self,
        url: Optional[str] = None,
        db_name: Optional[str] = None,
        collection: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> None:
        config = config or Config(".env")
        self._url = url or config.get("mongo_url")
        self._db = db_name or config.get("mongo_db")
        self._orders = collection or config.get("orders_collection")
        self._counters = config.get("counters_collection")
        self._products = config.get("products_collection")
        self._shipping_policy = ShippingPolicy.from_config(config)
        self._rates = CheckoutTaxRates.from_config(config)
        if not self._url:
            raise ValueError("DB_CONNECTION_URL is required")
        self._client: Optional[MongoClient] = None

    def __enter__(self) -> "OrderRepository":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def connect(self) -> None:
        if self._client is None:
            self._client = MongoClient(self._url, serverSelectionTimeoutMS=5000)

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _collection(self, name: str):
        if self._client is None:
            self.connect()
        return self._client[self._db][name]

    def get_order(self, order_id: str) -> Dict[str, Any]:
        try:
            order = self._collection(self._orders).find_one({"_id": _as_object_id(order_id)})
        except PyMongoError as e:
            logger.error(f"Failed to fetch order {order_id}: {e}")
            raise OrderStoreError(f"Unable to fetch order {order_id}: {e}") from e
        if not order:
            raise OrderNotFoundError(f"Order with ID {order_id} not found")
        return order

    def list_my_orders(self, user_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Orders of one user, newest first, optionally restricted to a status."""
        query: Dict[str, Any] = {"user": _as_object_id(user_id)}
        if status and status.lower() != "all":
            query["status"] = status.lower()
        try:
            cursor = self._collection(self._orders).find(query).sort("createdAt", DESCENDING)
            return list(cursor)
        except PyMongoError as e:
            logger.error(f"Failed to list orders for user {user_id}: {e}")
            raise OrderStoreError(f"Unable to list orders: {e}") from e

    def get_next_sequential_number(self) -> int:
        """Atomically increment and return the shared order-number counter."""
        try:
            counter = self._collection(self._counters).find_one_and_update(
                {"_id": ORDER_NUMBER_COUNTER},
                {"$inc": {"sequence": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error(f"Failed to advance order-number counter: {e}")
            raise OrderStoreError(f"Unable to allocate order number: {e}") from e
        return int(counter["sequence"])

    def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Persist a settled order.

        Totals are recomputed with the same implementation the checkout
        preview uses; a payload whose declared figures disagree is rejected.

        Args:
            payload: Order payload (items, shippingAddress, paymentMethod,
                shipping, gst, discount, couponCode, totalAmount, user)

        Returns:
            ``{"orderId": str, "orderNumber": int}``
        """
        items = payload.get("items") or []
        if not items:
            raise ValidationError("Cannot create an order without items")

        discount = as_number(payload.get("discount")) or 0.0
        totals, tax = checkout_totals(cart_subtotal(items), discount, self._shipping_policy, self._rates)

        declared = {
            "shipping": (as_number(payload.get("shipping")), totals.shipping_fee),
            "gst": (as_number(payload.get("gst")), totals.total_tax_amount),
            "totalAmount": (as_number(payload.get("totalAmount")), totals.grand_total),
        }
        for key, (given, expected) in declared.items():
            if given is not None and abs(round(given, 2) - round(expected, 2)) > TOTAL_TOLERANCE:
                raise ValidationError(f"Declared {key} {given:.2f} does not match computed {expected:.2f}")

        order_number = self.get_next_sequential_number()
        document = {
            "user": _as_object_id(payload.get("user")),
            "items": items,
            "shippingAddress": payload.get("shippingAddress"),
            "paymentMethod": payload.get("paymentMethod", "cod"),
            "paymentStatus": payload.get("paymentStatus", "pending"),
            "status": "pending",
            "couponCode": payload.get("couponCode"),
            "subtotal": totals.subtotal,
            "discount": totals.discount,
            "discountedSubtotal": totals.taxable_subtotal,
            "gstAmount": round(tax.total_tax_amount, 2),
            "shippingCharge": totals.shipping_fee,
            "totalAmount": totals.grand_total,
            "orderNumber": order_number,
            "createdAt": datetime.now(timezone.utc),
        }
        try:
            result = self._collection(self._orders).insert_one(document)
        except PyMongoError as e:
            logger.error(f"Failed to insert order #{order_number}: {e}")
            raise OrderStoreError(f"Unable to create order: {e}") from e

        logger.info(f"Created order {result.inserted_id} (#{order_number}) total {totals.grand_total:.2f}")
        return {"orderId": str(result.inserted_id), "orderNumber": order_number}

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        """Current price, stock and status of a product, or None if unknown."""
        try:
            product = self._collection(self._products).find_one({"_id": _as_object_id(product_id)})
        except PyMongoError as e:
            raise OrderStoreError(f"Unable to fetch product {product_id}: {e}") from e
        if not product:
            return None
        return {
            "id": str(product["_id"]),
            "name": product.get("name", ""),
            "price": as_number(product.get("price")) or 0.0,
            "stock": int(product.get("stock") or 0),
            "status": product.get("status", "active"),
        }
