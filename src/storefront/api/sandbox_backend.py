"""
FastAPI sandbox backend for local development and integration tests.

Implements the payment endpoints the storefront client depends on, a small
product catalog, order history, and a simulated redirect-based payment
gateway. The session credential is the ``user_token`` cookie; in the sandbox
its value is used directly as the user id.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, HTTPException, Cookie, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from ..core.config import ROOT_DIR, settings
from ..core.gateway import encode_success_payload
from ..models.api import LineItem

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)

SANDBOX_DB_PATH = ROOT_DIR / "data" / "sandbox_backend.db"
PRODUCT_CODE = "EPAYTEST"

DEMO_PRODUCTS = [
    ("p-100", "Wireless Mouse", "49.99", "seller-1", "Electronics", "Logi", "10", 4.5, 25),
    ("p-101", "Mechanical Keyboard", "120.00", "seller-1", "Electronics", "Keyz", None, 4.7, 10),
    ("p-200", "Cotton T-Shirt", "15.50", "seller-2", "Clothing", "Basics", "20", 4.1, 100),
    ("p-201", "Running Shoes", "85.00", "seller-2", "Footwear", "Stride", None, 4.3, 15),
]


class InitiateRequest(BaseModel):
    line_items: List[LineItem] = Field(alias="lineItems", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ConfirmRequest(BaseModel):
    transaction_ref: str = Field(alias="transactionRef")

    model_config = ConfigDict(populate_by_name=True)


def get_db(db_path: Path):
    """Get database connection."""
    conn = sqlite3.connect(str(db_path))
    conn.row_factory = sqlite3.Row
    return conn


def init_sandbox_db(db_path: Path):
    """Create the sandbox schema and seed the demo catalog."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_db(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                price TEXT NOT NULL,
                seller_id TEXT NOT NULL,
                category TEXT,
                brand TEXT,
                discount TEXT,
                rating FLOAT,
                stock INTEGER DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS payments (
                transaction_uuid TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                amount TEXT NOT NULL,
                items TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'PENDING',
                ref_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                transaction_uuid TEXT UNIQUE NOT NULL,
                amount TEXT NOT NULL,
                products TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        conn.executemany("""
            INSERT OR IGNORE INTO products
            (id, name, price, seller_id, category, brand, discount, rating, stock)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, DEMO_PRODUCTS)
        conn.commit()
        logger.info(f"[SANDBOX] Database ready at {db_path}")
    finally:
        conn.close()


def product_row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "price": Decimal(row["price"]),
        "sellerId": row["seller_id"],
        "category": row["category"],
        "brand": row["brand"],
        "discount": Decimal(row["discount"]) if row["discount"] else None,
        "rating": row["rating"],
        "stock": row["stock"],
    }


def order_row_to_dict(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "userId": row["user_id"],
        "amount": Decimal(row["amount"]),
        "products": json.loads(row["products"]),
        "transactionId": row["transaction_uuid"],
        "status": row["status"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def effective_price(price: Decimal, discount: Optional[Decimal]) -> Decimal:
    if discount:
        return price * (1 - discount / 100)
    return price


def require_user(user_token: Optional[str]) -> str:
    if not user_token:
        raise HTTPException(status_code=401, detail="User not authenticated")
    return user_token


def create_app(
    db_path: Optional[Path] = None,
    public_url: Optional[str] = None,
    frontend_url: Optional[str] = None,
) -> FastAPI:
    """
    Build the sandbox application.

    Args:
        db_path: SQLite file for catalog, payments and orders
        public_url: Base URL the sandbox is reachable at (for gateway links)
        frontend_url: Storefront URL the gateway redirects back to
    """
    db_path = Path(db_path or SANDBOX_DB_PATH)
    public_url = (public_url or settings.backend_url).rstrip("/")
    frontend_url = (frontend_url or settings.frontend_url).rstrip("/")
    init_sandbox_db(db_path)

    app = FastAPI(title="Storefront Sandbox Backend")

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
        )

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/products")
    def list_products():
        conn = get_db(db_path)
        try:
            rows = conn.execute("SELECT * FROM products ORDER BY id").fetchall()
        finally:
            conn.close()
        return {"success": True, "products": [product_row_to_dict(r) for r in rows]}

    @app.post("/payment/initiate")
    def initiate_payment(body: InitiateRequest, user_token: Optional[str] = Cookie(default=None)):
        """
        Open a payment for the submitted lines.
        Prices are taken from the catalog, not from the request.
        """
        user_id = require_user(user_token)

        conn = get_db(db_path)
        try:
            amount = Decimal("0")
            items = []
            for line in body.line_items:
                row = conn.execute(
                    "SELECT * FROM products WHERE id = ?", (line.product_id,)
                ).fetchone()
                if row is None:
                    raise HTTPException(status_code=400, detail=f"Unknown product: {line.product_id}")
                if row["seller_id"] != line.seller_id:
                    raise HTTPException(status_code=400, detail=f"Seller mismatch for {line.product_id}")

                price = effective_price(
                    Decimal(row["price"]), Decimal(row["discount"]) if row["discount"] else None
                )
                amount += price * line.quantity
                items.append({
                    "productId": line.product_id,
                    "sellerId": line.seller_id,
                    "quantity": line.quantity,
                    "price": str(price),
                })

            amount = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            transaction_uuid = str(uuid.uuid4())
            conn.execute("""
                INSERT INTO payments (transaction_uuid, user_id, amount, items)
                VALUES (?, ?, ?, ?)
            """, (transaction_uuid, user_id, str(amount), json.dumps(items)))
            conn.commit()
        finally:
            conn.close()

        logger.info(f"[SANDBOX] Payment {transaction_uuid} opened for {user_id}: {amount}")
        return {
            "success": True,
            "url": f"{public_url}/gateway/pay?{urlencode({'transaction_uuid': transaction_uuid})}",
            "transactionRef": transaction_uuid,
            "totalAmount": amount,
        }

    @app.get("/gateway/pay")
    def gateway_pay(transaction_uuid: str, outcome: Optional[str] = None):
        """
        Simulated gateway. Without ``outcome`` it shows a pay/cancel page;
        with it, it settles the payment and redirects back to the storefront.
        """
        conn = get_db(db_path)
        try:
            row = conn.execute(
                "SELECT * FROM payments WHERE transaction_uuid = ?", (transaction_uuid,)
            ).fetchone()
            if row is None:
                raise HTTPException(status_code=404, detail="Unknown transaction")

            if outcome is None:
                pay = urlencode({"transaction_uuid": transaction_uuid, "outcome": "complete"})
                cancel = urlencode({"transaction_uuid": transaction_uuid, "outcome": "cancel"})
                return HTMLResponse(
                    f"<h2>Sandbox gateway</h2><p>Amount: {row['amount']}</p>"
                    f"<a href='/gateway/pay?{pay}'>Pay</a> | "
                    f"<a href='/gateway/pay?{cancel}'>Cancel</a>"
                )

            if outcome == "complete":
                ref_id = uuid.uuid4().hex[:8].upper()
                conn.execute(
                    "UPDATE payments SET status = 'COMPLETE', ref_id = ? WHERE transaction_uuid = ?",
                    (ref_id, transaction_uuid),
                )
                conn.commit()
                data = encode_success_payload({
                    "transaction_code": ref_id,
                    "status": "COMPLETE",
                    "total_amount": row["amount"],
                    "transaction_uuid": transaction_uuid,
                    "product_code": PRODUCT_CODE,
                    "signed_field_names": "transaction_code,status,total_amount,transaction_uuid,product_code",
                })
                target = f"{frontend_url}/?{urlencode({'page': 'payment_success', 'data': data})}"
            else:
                conn.execute(
                    "UPDATE payments SET status = 'CANCELED' WHERE transaction_uuid = ?",
                    (transaction_uuid,),
                )
                conn.commit()
                target = f"{frontend_url}/?" + urlencode({
                    "page": "payment_failed",
                    "transaction_uuid": transaction_uuid,
                    "product_code": PRODUCT_CODE,
                    "total_amount": row["amount"],
                    "status": "CANCELED",
                    "error_message": "Payment cancelled by user",
                })
        finally:
            conn.close()

        logger.info(f"[SANDBOX] Gateway settled {transaction_uuid} with outcome {outcome}")
        return RedirectResponse(target, status_code=302)

    @app.get("/payment/status")
    def payment_status(
        transactionRef: str,
        amount: Optional[str] = None,
        productCode: Optional[str] = None,
        user_token: Optional[str] = Cookie(default=None),
    ):
        user_id = require_user(user_token)
        conn = get_db(db_path)
        try:
            row = conn.execute(
                "SELECT * FROM payments WHERE transaction_uuid = ? AND user_id = ?",
                (transactionRef, user_id),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            raise HTTPException(status_code=404, detail="Transaction not found")

        status = row["status"]
        if amount is not None and status == "COMPLETE" and Decimal(amount) != Decimal(row["amount"]):
            # amount the shopper saw does not match what the gateway charged
            status = "AMBIGUOUS"

        return {
            "success": True,
            "data": {
                "status": status,
                "refId": row["ref_id"],
                "transactionRef": transactionRef,
                "totalAmount": Decimal(row["amount"]),
            },
        }

    @app.post("/payment/confirm")
    def confirm_payment(body: ConfirmRequest, user_token: Optional[str] = Cookie(default=None)):
        """Create the order for a completed payment. Repeated calls return the same order."""
        user_id = require_user(user_token)
        conn = get_db(db_path)
        try:
            existing = conn.execute(
                "SELECT * FROM orders WHERE transaction_uuid = ?", (body.transaction_ref,)
            ).fetchone()
            if existing is not None:
                logger.info(f"[SANDBOX] Order already exists for {body.transaction_ref}")
                return {"success": True, "order": order_row_to_dict(existing)}

            payment = conn.execute(
                "SELECT * FROM payments WHERE transaction_uuid = ? AND user_id = ?",
                (body.transaction_ref, user_id),
            ).fetchone()
            if payment is None:
                raise HTTPException(status_code=404, detail="Transaction not found")
            if payment["status"] != "COMPLETE":
                raise HTTPException(
                    status_code=409, detail=f"Payment not completed: {payment['status']}"
                )

            now = datetime.now(timezone.utc).isoformat()
            order_id = str(uuid.uuid4())
            conn.execute("""
                INSERT INTO orders
                (id, user_id, transaction_uuid, amount, products, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 'PLACED', ?, ?)
            """, (order_id, user_id, body.transaction_ref, payment["amount"],
                  payment["items"], now, now))
            conn.commit()

            row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        finally:
            conn.close()

        logger.info(f"[SANDBOX] Order {order_id} created for {body.transaction_ref}")
        return {"success": True, "order": order_row_to_dict(row)}

    @app.get("/orders")
    def list_orders(user_token: Optional[str] = Cookie(default=None)):
        user_id = require_user(user_token)
        conn = get_db(db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
            ).fetchall()
        finally:
            conn.close()
        return {"success": True, "orders": [order_row_to_dict(r) for r in rows]}

    @app.delete("/orders/{order_id}")
    def cancel_order(order_id: str, user_token: Optional[str] = Cookie(default=None)):
        user_id = require_user(user_token)
        conn = get_db(db_path)
        try:
            cursor = conn.execute("""
                UPDATE orders SET status = 'CANCELLED', updated_at = ?
                WHERE id = ? AND user_id = ? AND status = 'PLACED'
            """, (datetime.now(timezone.utc).isoformat(), order_id, user_id))
            conn.commit()
        finally:
            conn.close()

        if cursor.rowcount == 0:
            raise HTTPException(status_code=404, detail="Order not found or not cancellable")
        return {"success": True}

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="127.0.0.1", port=8080)
