# plantshop/services/usage_ledger.py
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictOnMutation
from ..extensions import db
from ..model import Coupon, CouponUsage
from ..utils.dates import utcnow
from ..utils.logger import get_logger

log = get_logger("ledger")

PER_USER_LIMIT_MSG = "You have reached the usage limit for this coupon"


def _bump_user(coupon: Coupon, user_id: int, now) -> bool:
    per_user = coupon.usage_limit_per_user or 1
    result = db.session.execute(
        update(CouponUsage)
        .where(CouponUsage.coupon_id == coupon.id,
               CouponUsage.user_id == user_id,
               CouponUsage.count < per_user)
        .values(count=CouponUsage.count + 1, last_used=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _has_usage_row(coupon_id: int, user_id: int) -> bool:
    row = db.session.execute(
        db.select(CouponUsage.id).filter_by(coupon_id=coupon_id, user_id=user_id)
    ).first()
    return row is not None


def use(coupon: Coupon, user_id: int, now=None) -> None:
    """
    Record one use of ``coupon`` by ``user_id``.

    Both counters move through guarded UPDATEs, so two requests racing for the
    last use cannot both win. Runs inside the caller's transaction; the caller
    commits, or rolls back on ConflictOnMutation.
    """
    now = now or utcnow()

    total = db.session.execute(
        update(Coupon)
        .where(Coupon.id == coupon.id)
        .where(or_(Coupon.usage_limit_total.is_(None),
                   Coupon.usage_count_total < Coupon.usage_limit_total))
        .values(usage_count_total=Coupon.usage_count_total + 1)
        .execution_options(synchronize_session=False)
    )
    if total.rowcount != 1:
        log.warning("total usage guard rejected coupon=%s user=%s", coupon.code, user_id)
        raise ConflictOnMutation("Coupon usage limit has been reached")

    if not _bump_user(coupon, user_id, now):
        if _has_usage_row(coupon.id, user_id):
            log.warning("per-user usage guard rejected coupon=%s user=%s", coupon.code, user_id)
            raise ConflictOnMutation(PER_USER_LIMIT_MSG)
        try:
            # savepoint: a lost insert must not undo the total increment above
            with db.session.begin_nested():
                db.session.add(CouponUsage(coupon_id=coupon.id, user_id=user_id, count=1, last_used=now))
        except IntegrityError:
            # another request inserted the first row for this user meanwhile
            log.warning("concurrent first use of coupon=%s user=%s, retrying", coupon.code, user_id)
            if not _bump_user(coupon, user_id, now):
                raise ConflictOnMutation(PER_USER_LIMIT_MSG)

    # counters were bumped in SQL; drop the stale in-memory copies
    for row in coupon.usages:
        db.session.expire(row)
    db.session.expire(coupon, ["usage_count_total", "usages"])
