# --- category/routes.py ---
from flask import request

from . import bp
from ..errors import ApiError
from ..extensions import db
from ..model import Category, Product
from ..utils.api import ok
from ..utils.decorators import admin_required


# ------------------------ helpers ------------------------
def _to_int(v, default=None):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _unique_name(name, exclude_id=None):
    q = Category.query.filter(Category.name.ilike(name))
    if exclude_id:
        q = q.filter(Category.id != exclude_id)
    if q.first():
        raise ApiError("category name already exists", 409)


def _get_or_404(cid) -> Category:
    c = db.session.get(Category, cid)
    if not c:
        raise ApiError("Category not found", 404)
    return c


# ------------------------ CATEGORY ROUTES ------------------------

@bp.get("")
def list_categories():
    """
    q -> substring match on name
    """
    q = (request.args.get("q") or "").strip()
    qry = Category.query
    if q:
        qry = qry.filter(Category.name.ilike(f"%{q}%"))
    # NULL display_order sorts last
    qry = qry.order_by(Category.display_order.is_(None), Category.display_order.asc(), Category.name.asc())
    return ok("Categories fetched", {"categories": [c.as_dict() for c in qry.all()]})


@bp.get("/<int:cid>")
def get_category(cid):
    return ok("Category fetched", {"category": _get_or_404(cid).as_dict()})


@bp.post("")
@admin_required
def create_category():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        raise ApiError("name required", 400)
    _unique_name(name)
    c = Category(
        name=name,
        description=data.get("description"),
        display_order=_to_int(data.get("display_order")),
    )
    db.session.add(c)
    db.session.commit()
    return ok("Category created", {"category": c.as_dict()}, 201)


@bp.put("/<int:cid>")
@admin_required
def update_category(cid):
    c = _get_or_404(cid)
    data = request.get_json(silent=True) or {}
    if "name" in data:
        new_name = (data.get("name") or "").strip()
        if not new_name:
            raise ApiError("name cannot be empty", 400)
        _unique_name(new_name, exclude_id=c.id)
        c.name = new_name
    if "description" in data:
        c.description = data.get("description")
    if "display_order" in data:
        c.display_order = _to_int(data.get("display_order"))
    db.session.commit()
    return ok("Category updated", {"category": c.as_dict()})


@bp.delete("/<int:cid>")
@admin_required
def delete_category(cid):
    c = _get_or_404(cid)
    if Product.query.filter_by(category_id=cid).first():
        raise ApiError("cannot delete: category has products", 409)
    db.session.delete(c)
    db.session.commit()
    return ok("Category deleted")
