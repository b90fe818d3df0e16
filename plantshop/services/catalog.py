# plantshop/services/catalog.py
from ..errors import NotFound
from ..extensions import db
from ..model import Product


def get_products_by_ids(ids) -> list[Product]:
    ids = {int(i) for i in ids if i is not None}
    if not ids:
        return []
    return db.session.execute(db.select(Product).where(Product.id.in_(ids))).scalars().all()


def get_active_product(product_id) -> Product:
    product = db.session.get(Product, product_id)
    if not product or product.is_active is False:
        raise NotFound("Product not found")
    return product
