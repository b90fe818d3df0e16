# plantshop/coupon/routes.py
from flask import request

from . import bp
from ..errors import InvalidInput
from ..services import coupon_service as svc
from ..utils.api import ok
from ..utils.decorators import _current_user, login_required, role_required

ADMIN_ONLY = "Admin access required"


# ---- customer -----------------------------------------------------------------

@bp.post("/validate")
def validate_coupon():
    # token is optional; anonymous previews skip the per-user checks
    user = _current_user(optional=True)
    data = request.get_json(silent=True) or {}
    user_id = user.id if user else data.get("userId")
    try:
        user_id = int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        raise InvalidInput("Invalid user ID")
    result = svc.validate_code(data.get("code"), data.get("cartItems") or [], user_id)
    return ok("Coupon is valid", result)


@bp.get("/available")
@login_required
def available_coupons():
    user = _current_user()
    return ok("Available coupons retrieved", svc.available_for_user(user.id))


@bp.post("/apply")
@login_required
def apply_coupon():
    data = request.get_json(silent=True) or {}
    coupon = svc.record_usage(data.get("couponId"), data.get("orderId"), _current_user())
    return ok("Coupon applied successfully", {
        "coupon": coupon.summary(),
        "usageCount": coupon.usage_count_total,
    })


# ---- admin --------------------------------------------------------------------

@bp.get("")
@role_required("admin", message=ADMIN_ONLY)
def list_coupons():
    return ok("Coupons retrieved", svc.list_coupons(request.args))


@bp.post("")
@role_required("admin", message=ADMIN_ONLY)
def create_coupon():
    data = request.get_json(silent=True) or {}
    coupon = svc.create_coupon(data, created_by=_current_user().id)
    return ok("Coupon created successfully", {"coupon": coupon.as_api(include_usage=True)}, 201)


@bp.post("/bulk")
@role_required("admin", message=ADMIN_ONLY)
def bulk_coupons():
    data = request.get_json(silent=True) or {}
    modified = svc.bulk_operation(data.get("operation"), data.get("couponIds"), data.get("data"))
    return ok(f"Bulk {data.get('operation')} completed successfully", {"modifiedCount": modified})


@bp.get("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def get_coupon(coupon_id: int):
    coupon = svc.get_coupon(coupon_id)
    return ok("Coupon retrieved", {"coupon": coupon.as_api(include_usage=True)})


@bp.put("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def update_coupon(coupon_id: int):
    data = request.get_json(silent=True) or {}
    coupon = svc.update_coupon(svc.get_coupon(coupon_id), data)
    return ok("Coupon updated successfully", {"coupon": coupon.as_api(include_usage=True)})


@bp.delete("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def delete_coupon(coupon_id: int):
    svc.delete_coupon(svc.get_coupon(coupon_id))
    return ok("Coupon deleted successfully")


@bp.get("/<int:coupon_id>/stats")
@role_required("admin", message=ADMIN_ONLY)
def coupon_stats(coupon_id: int):
    coupon = svc.get_coupon(coupon_id)
    return ok("Coupon statistics retrieved", {
        "coupon": coupon.summary(),
        "stats": svc.coupon_stats(coupon),
    })
