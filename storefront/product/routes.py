# storefront/product/routes.py
from io import BytesIO

import pandas as pd
from flask import g, request, send_file, url_for
from sqlalchemy import asc, desc, or_
from sqlalchemy.exc import IntegrityError

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..logger import log
from ..model import CartProduct, Category, PriceList, Product, ProductImage
from ..utils.api import ok
from ..utils.decorators import admin_required, session_optional
from ..utils.money import D

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
IMPORT_COLUMNS = ["Name", "Tagline", "Category", "Display Order", "Active", "Weight", "Unit Price", "Base Price"]


# ---------- helpers ----------
def _ep(name: str) -> str:
    return f"{bp.name}.{name}"


def _parse_bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(v, default=0):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _parse_opt_int(v):
    if v is None:
        return None
    if isinstance(v, str) and v.strip().lower() in {"", "null"}:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _parse_money(v, field):
    try:
        value = D(v)
    except ArithmeticError:
        raise ApiError(f"Invalid value for {field}", 422)
    if value < 0:
        raise ApiError(f"{field} must not be negative", 422)
    return value


def _sort_products(query, sort):
    sort = (sort or "").strip()
    mapping = {
        "id": asc(Product.id), "-id": desc(Product.id),
        "name": asc(Product.name), "-name": desc(Product.name),
    }
    if sort in mapping:
        return query.order_by(mapping[sort])
    # default: shop display order, then newest
    return query.order_by(Product.display_order.is_(None), asc(Product.display_order), desc(Product.id))


def _page_url(page, per_page):
    args = request.args.to_dict(flat=True)
    args["page"] = page
    args["per_page"] = per_page
    return url_for(_ep("list_products"), _external=True, **args)


def _get_or_404(pid) -> Product:
    product = db.session.get(Product, pid)
    if not product:
        raise ApiError("Product not found", 404)
    return product


def _is_admin():
    user = g.get("current_user")
    return bool(user and user.is_admin)


def _apply_category(product, data):
    if "category_id" not in data:
        return
    cid = _parse_opt_int(data.get("category_id"))
    if cid is not None and not db.session.get(Category, cid):
        raise ApiError(f"Category {cid} not found", 404)
    product.category_id = cid


def _sync_price_lists(product: Product, rows):
    """Upsert price lists by id; rows left out of the payload are removed."""
    if not isinstance(rows, list):
        raise ApiError("price_lists must be a list", 422)

    existing = {pl.id: pl for pl in product.price_lists}
    keep = set()
    for raw in rows:
        weight = (raw.get("weight") or "").strip()
        if not weight:
            raise ApiError("price list weight is required", 422)
        unit_price = _parse_money(raw.get("unit_price"), "unit_price")
        base_price = _parse_money(raw["base_price"], "base_price") if raw.get("base_price") is not None else None

        pl = existing.get(_parse_opt_int(raw.get("id")))
        if pl is None:
            pl = PriceList()
            product.price_lists.append(pl)
        else:
            keep.add(pl.id)
        pl.weight = weight
        pl.unit_price = unit_price
        pl.base_price = base_price

    for pid, pl in existing.items():
        if pid not in keep:
            if CartProduct.query.filter_by(price_list_id=pid).first():
                raise ApiError(f"Price list {pid} is used by carts and cannot be removed", 409)
            product.price_lists.remove(pl)


def _apply_images(product: Product, images):
    product.images.clear()
    for i, img in enumerate(images or []):
        file_name = (img.get("file_name") or "").strip() if isinstance(img, dict) else str(img).strip()
        if not file_name:
            continue
        product.images.append(ProductImage(
            file_name=file_name,
            description=img.get("description") if isinstance(img, dict) else None,
            display_order=_parse_int(img.get("display_order"), i) if isinstance(img, dict) else i,
        ))


def _apply_fields(product: Product, data):
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ApiError("name is required", 400)
        clash = Product.query.filter(Product.name == name)
        if product.id:
            clash = clash.filter(Product.id != product.id)
        if clash.first():
            raise ApiError("Product name already exists", 409)
        product.name = name
    if "tagline" in data:
        product.tagline = data.get("tagline")
    if "display_order" in data:
        product.display_order = _parse_opt_int(data.get("display_order"))
    if "is_active" in data:
        product.is_active = _parse_bool(data.get("is_active"), True)
    _apply_category(product, data)
    if "price_lists" in data:
        _sync_price_lists(product, data.get("price_lists") or [])
    if "images" in data:
        _apply_images(product, data.get("images"))


def _commit_unique():
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ApiError("Product name already exists", 409)


# ---------- routes ----------
# GET /products
@bp.get("")
@session_optional
def list_products():
    """
    Query params:
      q                -> substring match on name/tagline
      category_id      -> int
      include_inactive -> admins only
      sort             -> id, -id, name, -name (default display order)
      page             -> int, default 1
      per_page         -> int, default 15 (cap 100)
    """
    q = (request.args.get("q") or "").strip()
    category_id = _parse_opt_int(request.args.get("category_id"))
    include_inactive = _parse_bool(request.args.get("include_inactive")) and _is_admin()
    page = max(request.args.get("page", default=1, type=int) or 1, 1)
    per_page = request.args.get("per_page", default=15, type=int) or 15
    per_page = max(1, min(per_page, 100))

    query = Product.query
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if q:
        like = f"%{q}%"
        query = query.filter(or_(Product.name.ilike(like), Product.tagline.ilike(like)))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)

    pagination = _sort_products(query, request.args.get("sort")).paginate(
        page=page, per_page=per_page, error_out=False
    )
    items = [p.as_api() for p in pagination.items]

    links = {
        "first": _page_url(1, per_page),
        "last": _page_url(pagination.pages or 1, per_page),
        "prev": _page_url(pagination.prev_num, per_page) if pagination.has_prev else None,
        "next": _page_url(pagination.next_num, per_page) if pagination.has_next else None,
    }
    meta = {
        "current_page": pagination.page,
        "last_page": pagination.pages or 1,
        "per_page": per_page,
        "total": pagination.total,
    }
    return ok("Products fetched", {"items": items, "links": links, "meta": meta})


# GET /products/<id>
@bp.get("/<int:pid>")
@session_optional
def get_product(pid):
    product = _get_or_404(pid)
    if not product.is_active and not _is_admin():
        raise ApiError("Product not found", 404)
    return ok("Product fetched", product.as_api())


# POST /products
@bp.post("")
@admin_required
def create_product():
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        raise ApiError("name is required", 400)

    product = Product(is_active=True)
    _apply_fields(product, data)
    db.session.add(product)
    _commit_unique()
    log.info("product created id=%s", product.id)

    resp = ok("Product created", product.as_api(), 201)
    resp.headers["Location"] = url_for(_ep("get_product"), pid=product.id, _external=True)
    return resp


# PUT /products/<id>
@bp.put("/<int:pid>")
@admin_required
def update_product(pid):
    product = _get_or_404(pid)
    data = request.get_json(silent=True) or {}
    _apply_fields(product, data)
    _commit_unique()
    return ok("Product updated", product.as_api())


# DELETE /products/<id>
@bp.delete("/<int:pid>")
@admin_required
def delete_product(pid):
    product = _get_or_404(pid)
    if CartProduct.query.filter_by(product_id=pid).first():
        # carts and orders still point at it
        product.is_active = False
        db.session.commit()
        return ok("Product deactivated", product.as_api())
    db.session.delete(product)
    db.session.commit()
    return ok("Product deleted")


@bp.get("/export")
@admin_required
def export_products():
    """
    Export all products, one row per price list, as an Excel file.
    """
    rows = []
    for p in Product.query.order_by(Product.id.asc()).all():
        for pl in (p.price_lists or [None]):
            rows.append({
                "ID": p.id,
                "Name": p.name,
                "Tagline": p.tagline,
                "Category": p.category.name if p.category else None,
                "Display Order": p.display_order,
                "Active": p.is_active,
                "Weight": pl.weight if pl else None,
                "Unit Price": float(pl.unit_price) if pl else None,
                "Base Price": float(pl.base_price) if pl and pl.base_price is not None else None,
            })
    df = pd.DataFrame(rows, columns=["ID"] + IMPORT_COLUMNS)

    output = BytesIO()
    df.to_excel(output, index=False, engine="openpyxl")
    output.seek(0)

    return send_file(
        output,
        as_attachment=True,
        download_name="products_export.xlsx",
        mimetype=XLSX_MIMETYPE,
    )


@bp.post("/import")
@admin_required
def import_products():
    """
    Import products from an uploaded .xlsx file laid out like the export.
    Rows sharing a product name become price lists of one product; existing
    products get the listed price lists added or updated by weight.
    """
    file = request.files.get("file")
    if not file or not file.filename:
        raise ApiError("No file uploaded", 400)
    if not file.filename.lower().endswith(".xlsx"):
        raise ApiError("Only .xlsx files are allowed", 400)

    df = pd.read_excel(file, engine="openpyxl")
    missing = [c for c in IMPORT_COLUMNS if c not in df.columns]
    if missing:
        raise ApiError("Missing required columns in the uploaded file", 400, {"missing": missing})
    df = df.astype(object).where(pd.notnull(df), None)

    categories = {c.name.lower(): c for c in Category.query.all()}
    created = updated = 0
    for name, rows in df.groupby("Name", sort=False):
        name = str(name).strip()
        if not name:
            continue
        first = rows.iloc[0]
        product = Product.query.filter(Product.name == name).first()
        if product:
            updated += 1
        else:
            product = Product(name=name)
            db.session.add(product)
            created += 1

        product.tagline = first["Tagline"]
        product.display_order = _parse_opt_int(first["Display Order"])
        product.is_active = _parse_bool(first["Active"], True)

        cat_name = (str(first["Category"]).strip() if first["Category"] else "")
        if cat_name:
            cat = categories.get(cat_name.lower())
            if not cat:
                cat = Category(name=cat_name)
                db.session.add(cat)
                categories[cat_name.lower()] = cat
            product.category = cat

        by_weight = {pl.weight: pl for pl in product.price_lists}
        for _, r in rows.iterrows():
            weight = str(r["Weight"] or "").strip()
            if not weight:
                continue
            pl = by_weight.get(weight)
            if pl is None:
                pl = PriceList(weight=weight)
                product.price_lists.append(pl)
                by_weight[weight] = pl
            pl.unit_price = _parse_money(r["Unit Price"], "Unit Price")
            pl.base_price = _parse_money(r["Base Price"], "Base Price") if r["Base Price"] is not None else None

    _commit_unique()
    log.info("products imported created=%s updated=%s", created, updated)
    return ok("Products imported successfully", {"created": created, "updated": updated})
