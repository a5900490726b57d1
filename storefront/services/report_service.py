# storefront/services/report_service.py
"""
Admin reporting.

Every report starts from the same line-level rows: one row per ordered cart
product, joined with its order, customer, delivery address, product, category
and price list. The rows are loaded with a single query and aggregated with
pandas.
"""
from datetime import datetime, timedelta
from io import BytesIO

import pandas as pd

from ..errors import ApiError
from ..extensions import db
from ..model import (
    CartProduct, Category, Order, OrderCoupon, PriceList, Product, User, UserAddress,
)
from ..model.order import ORDER_CANCELLED, ORDER_DELIVERED, ORDER_ORDERED
from ..utils.money import D, to_float
from .cart_service import price_lines
from .discount_engine import LineItem
from .user_service import phone_key

FILTER_KEYS = ("from_date", "to_date", "order_status", "category", "product", "name", "phone")

ROW_COLUMNS = [
    "order_id", "user_id", "user_address_id", "cart_id", "ordered_date", "order_status",
    "shipping_method", "payment_method", "expected_delivery_date", "notes", "delivery_note",
    "delivery_name", "address_line1", "city", "state", "country", "pincode", "delivery_phone",
    "customer_name", "customer_phone", "customer_email",
    "product_id", "price_list_id", "quantity", "product_name", "category_name", "weight", "price",
]

EXPORT_COLUMNS = {
    "order_id": "Order ID",
    "ordered_date": "Order Date",
    "order_status": "Status",
    "customer_name": "Customer",
    "customer_phone": "Phone",
    "customer_email": "Email",
    "delivery_name": "Deliver To",
    "address_line1": "Address",
    "city": "City",
    "state": "State",
    "pincode": "Pincode",
    "shipping_method": "Shipping Method",
    "payment_method": "Payment Method",
    "category_name": "Category",
    "product_name": "Product",
    "weight": "Weight",
    "quantity": "Quantity",
    "price": "Unit Price",
    "product_total": "Line Total",
    "coupon_code": "Coupon",
    "product_discount": "Product Discount",
    "shipping_discount": "Shipping Discount",
    "order_total": "Order Total",
}


def parse_day(value, field):
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d")
    except ValueError:
        raise ApiError(f"{field} must be YYYY-MM-DD", 400)


def parse_filters(data: dict | None) -> dict:
    data = data or {}
    filters = {k: (str(data.get(k)).strip() if data.get(k) not in (None, "") else None) for k in FILTER_KEYS}
    filters["from_date"] = parse_day(filters["from_date"], "from_date")
    filters["to_date"] = parse_day(filters["to_date"], "to_date")
    return filters


def _iso(v):
    if v is None or v is pd.NaT or (isinstance(v, float) and pd.isna(v)):
        return None
    return v.isoformat() if hasattr(v, "isoformat") else str(v)


def _row_query(filters):
    q = (db.session.query(
            Order.id.label("order_id"),
            Order.user_id,
            Order.user_address_id,
            Order.cart_id,
            Order.ordered_date,
            Order.status.label("order_status"),
            Order.shipping_method,
            Order.payment_method,
            Order.expected_delivery_date,
            Order.notes,
            Order.delivery_note,
            UserAddress.name.label("delivery_name"),
            UserAddress.address_line1,
            UserAddress.city,
            UserAddress.state,
            UserAddress.country,
            UserAddress.pincode,
            UserAddress.phone.label("delivery_phone"),
            User.name.label("customer_name"),
            User.phone.label("customer_phone"),
            User.email.label("customer_email"),
            CartProduct.product_id,
            CartProduct.price_list_id,
            CartProduct.quantity,
            Product.name.label("product_name"),
            Category.name.label("category_name"),
            PriceList.weight,
            PriceList.unit_price.label("price"),
         )
         .join(User, User.id == Order.user_id)
         .join(UserAddress, UserAddress.id == Order.user_address_id)
         .join(CartProduct, CartProduct.cart_id == Order.cart_id)
         .join(Product, Product.id == CartProduct.product_id)
         .join(PriceList, PriceList.id == CartProduct.price_list_id)
         .outerjoin(Category, Category.id == Product.category_id))

    if filters.get("from_date"):
        q = q.filter(Order.ordered_date >= filters["from_date"])
    if filters.get("to_date"):
        q = q.filter(Order.ordered_date < filters["to_date"] + timedelta(days=1))
    if filters.get("order_status"):
        q = q.filter(Order.status == filters["order_status"])
    if filters.get("category"):
        q = q.filter(Category.name == filters["category"])
    if filters.get("product"):
        q = q.filter(Product.name == filters["product"])
    if filters.get("name"):
        q = q.filter(User.name.ilike(f"%{filters['name']}%"))
    if filters.get("phone"):
        q = q.filter(User.phone_key == phone_key(filters["phone"]))

    return q.order_by(Order.ordered_date.desc(), Order.id.desc(), CartProduct.id.asc())


def load_rows(filters) -> pd.DataFrame:
    rows = [dict(r._mapping) for r in _row_query(filters).all()]
    df = pd.DataFrame(rows, columns=ROW_COLUMNS)
    df["price"] = df["price"].map(lambda v: float(v or 0)).astype(float)
    df["quantity"] = df["quantity"].fillna(0).astype(int)
    df["product_total"] = df["price"] * df["quantity"]
    df["category_name"] = df["category_name"].fillna("Uncategorized")
    return df


def _order_coupons(order_ids):
    """First coupon per order, keyed by order id."""
    if not order_ids:
        return {}
    links = (OrderCoupon.query
             .filter(OrderCoupon.order_id.in_(order_ids))
             .order_by(OrderCoupon.id.asc())
             .all())
    out = {}
    for link in links:
        out.setdefault(link.order_id, link.coupon)
    return out


def _order_lines(order_ids):
    """Every cart line of each order, ignoring the report filters."""
    rows = (db.session.query(Order.id, Order.shipping_method, CartProduct.product_id,
                             CartProduct.quantity, PriceList.unit_price)
            .join(CartProduct, CartProduct.cart_id == Order.cart_id)
            .join(PriceList, PriceList.id == CartProduct.price_list_id)
            .filter(Order.id.in_(order_ids))
            .order_by(Order.id.asc(), CartProduct.id.asc())
            .all())
    out = {}
    for order_id, shipping_method, product_id, quantity, unit_price in rows:
        _, items = out.setdefault(order_id, (shipping_method, []))
        items.append(LineItem(product_id=product_id, quantity=quantity, unit_price=D(unit_price)))
    return out


def order_totals(df: pd.DataFrame) -> pd.DataFrame:
    """Per-order subtotal, discounts and total for the orders in ``df``.

    Orders are priced from their whole cart, so a category or product filter
    narrows the listed rows without changing the order's totals.
    """
    columns = ["order_id", "coupon_code", "order_total", "product_discount", "shipping_fee",
               "shipping_discount", "total"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    order_ids = [int(i) for i in df["order_id"].unique()]
    coupons = _order_coupons(order_ids)
    lines = _order_lines(order_ids)
    out = []
    for order_id in order_ids:
        shipping_method, items = lines[order_id]
        coupon = coupons.get(order_id)
        t = price_lines(items, coupon, shipping_method)
        out.append({
            "order_id": order_id,
            "coupon_code": coupon.code if coupon else None,
            "order_total": to_float(t["subtotal"]),
            "product_discount": to_float(t["product_discount"]),
            "shipping_fee": to_float(t["shipping_fee"]),
            "shipping_discount": to_float(t["shipping_discount"]),
            "total": to_float(t["total"]),
        })
    return pd.DataFrame(out, columns=columns)


def dashboard_kpis(filters):
    df = load_rows(filters)
    if df.empty:
        return {"total_sales": 0.0, "total_orders": 0, "avg_order_value": 0.0, "pending_orders": 0}

    total_sales = float(df["product_total"].sum())
    total_orders = int(df["order_id"].nunique())
    pending = int(df.loc[df["order_status"] == ORDER_ORDERED, "order_id"].nunique())
    return {
        "total_sales": round(total_sales, 2),
        "total_orders": total_orders,
        "avg_order_value": round(total_sales / total_orders, 2) if total_orders else 0.0,
        "pending_orders": pending,
    }


def _sales_by(df, column, label):
    if df.empty:
        return []
    s = df.groupby(column)["product_total"].sum().sort_values(ascending=False)
    return [{label: str(k), "total_sales": round(float(v), 2)} for k, v in s.items()]


def _quantities_by_status(df):
    if df.empty:
        return []
    done = df["order_status"] == ORDER_DELIVERED
    pending = ~done & (df["order_status"] != ORDER_CANCELLED)
    q = pd.DataFrame({
        "product": df["product_name"],
        "pending_quantity": df["quantity"].where(pending, 0),
        "fulfilled_quantity": df["quantity"].where(done, 0),
    }).groupby("product", sort=True).sum()
    return [
        {"product": str(name), "pending_quantity": int(r.pending_quantity),
         "fulfilled_quantity": int(r.fulfilled_quantity)}
        for name, r in q.iterrows()
    ]


def chart_data(filters):
    df = load_rows(filters)
    return {
        "total_sales_by_category": _sales_by(df, "category_name", "category"),
        "total_sales_by_product": _sales_by(df, "product_name", "product"),
        "total_sales_by_order_status": _sales_by(df, "order_status", "order_status"),
        "products_with_quantities_by_order_status": _quantities_by_status(df),
    }


def fetch_orders(filters):
    """Orders with their products grouped under each order."""
    df = load_rows(filters)
    if df.empty:
        return []
    totals = order_totals(df).set_index("order_id")

    orders = []
    for order_id, g in df.groupby("order_id", sort=False):
        first = g.iloc[0]
        t = totals.loc[int(order_id)]
        orders.append({
            "order_id": int(order_id),
            "user_id": int(first["user_id"]),
            "user_address_id": int(first["user_address_id"]),
            "cart_id": int(first["cart_id"]),
            "ordered_date": _iso(first["ordered_date"]),
            "order_status": first["order_status"],
            "shipping_method": first["shipping_method"],
            "payment_method": first["payment_method"],
            "expected_delivery_date": _iso(first["expected_delivery_date"]),
            "delivery_name": first["delivery_name"],
            "address_line1": first["address_line1"],
            "city": first["city"],
            "state": first["state"],
            "country": first["country"],
            "pincode": first["pincode"],
            "delivery_phone": first["delivery_phone"],
            "customer_name": first["customer_name"],
            "customer_phone": first["customer_phone"],
            "customer_email": first["customer_email"],
            "notes": first["notes"],
            "delivery_note": first["delivery_note"],
            "products": [
                {
                    "product_id": int(r.product_id),
                    "price_list_id": int(r.price_list_id),
                    "product_name": r.product_name,
                    "category_name": r.category_name,
                    "weight": r.weight,
                    "quantity": int(r.quantity),
                    "price": round(float(r.price), 2),
                    "product_total": round(float(r.product_total), 2),
                }
                for r in g.itertuples()
            ],
            "coupon_code": t["coupon_code"],
            "order_total": float(t["order_total"]),
            "product_discount": float(t["product_discount"]),
            "shipping_fee": float(t["shipping_fee"]),
            "shipping_discount": float(t["shipping_discount"]),
            "total": float(t["total"]),
        })
    return orders


def export_orders(filters) -> BytesIO:
    """Excel workbook with one row per ordered product plus the order's discounts."""
    df = load_rows(filters)
    totals = order_totals(df)
    if not df.empty:
        df = df.merge(totals, on="order_id", how="left")
        df["ordered_date"] = pd.to_datetime(df["ordered_date"]).dt.strftime("%Y-%m-%d %H:%M")
    else:
        df = df.reindex(columns=list(EXPORT_COLUMNS))

    out = df[list(EXPORT_COLUMNS)].rename(columns=EXPORT_COLUMNS)
    output = BytesIO()
    out.to_excel(output, index=False, sheet_name="Orders", engine="openpyxl")
    output.seek(0)
    return output
