"""Admin maintenance of the aggregated inventory pool."""
import logging

from sqlalchemy import func, select

from agrimarket import db
from agrimarket.errors import NotFoundError, translate_db_errors
from agrimarket.models import PRODUCT_CATEGORIES, QUALITY_GRADES, AggregatedProduct
from agrimarket.services.validators import (optional_text, parse_count, parse_non_negative, parse_price,
                                            require_choice, require_object, require_text)

log = logging.getLogger(__name__)


def _regions(value):
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return sorted({str(region).strip() for region in value if str(region).strip()})


def get_aggregated_product(product_id):
    product = db.session.get(AggregatedProduct, product_id)
    if product is None:
        raise NotFoundError('Product not found')
    return product


def create_aggregated_product(data):
    data = require_object(data, 'Product data')
    product = AggregatedProduct(
        product_name=require_text(data.get('product_name'), 'product_name'),
        category=require_choice(data.get('category'), PRODUCT_CATEGORIES, 'category'),
        description=optional_text(data.get('description')),
        total_quantity=parse_non_negative(data.get('total_quantity', 0), 'total_quantity'),
        quantity_unit=optional_text(data.get('quantity_unit')) or 'kg',
        standard_price=parse_price(data.get('standard_price'), 'standard_price'),
        quality_grade=require_choice(data.get('quality_grade', 'A'), QUALITY_GRADES, 'quality_grade'),
        farmer_count=parse_count(data.get('farmer_count', 0), 'farmer_count'),
        regions=_regions(data.get('regions')),
        admin_certified=bool(data.get('admin_certified', False)),
        quality_assured=bool(data.get('quality_assured', False)),
    )
    with translate_db_errors(db.session, 'Inventory creation'):
        db.session.add(product)
        db.session.flush()
        summary = (product.id, product.product_name, product.total_quantity)
        db.session.commit()
    log.info('inventory.created id=%s name=%s qty=%g', *summary)
    return product


def update_aggregated_product(product_id, data):
    """Admin price/quantity edits. Quantity may not go below zero."""
    data = require_object(data, 'Product data')
    with translate_db_errors(db.session, 'Inventory update'):
        product = get_aggregated_product(product_id)
        if 'standard_price' in data:
            product.standard_price = parse_price(data['standard_price'], 'standard_price')
        if 'total_quantity' in data:
            product.total_quantity = parse_non_negative(data['total_quantity'], 'total_quantity')
        if 'quality_grade' in data:
            product.quality_grade = require_choice(data['quality_grade'], QUALITY_GRADES, 'quality_grade')
        if 'description' in data:
            product.description = optional_text(data['description'])
        if 'regions' in data:
            product.regions = _regions(data['regions'])
        if 'farmer_count' in data:
            product.farmer_count = parse_count(data['farmer_count'], 'farmer_count')
        if 'admin_certified' in data:
            product.admin_certified = bool(data['admin_certified'])
        summary = (product.id, product.standard_price, product.total_quantity)
        db.session.commit()
    log.info('inventory.updated id=%s price=%.2f qty=%g', *summary)
    return product


def delete_aggregated_product(product_id):
    with translate_db_errors(db.session, 'Inventory removal'):
        product = get_aggregated_product(product_id)
        db.session.delete(product)
        db.session.commit()
    log.info('inventory.deleted id=%s', product_id)


def list_available(category=None, search=None):
    query = AggregatedProduct.query.filter(AggregatedProduct.total_quantity > 0)
    if category:
        query = query.filter_by(category=category)
    if search:
        query = query.filter(AggregatedProduct.product_name.ilike(f'%{search}%'))
    return query.order_by(AggregatedProduct.product_name).all()


def inventory_summary():
    """Headline numbers for the in-stock part of the pool."""
    row = db.session.execute(
        select(
            func.count(AggregatedProduct.id),
            func.coalesce(func.sum(AggregatedProduct.total_quantity), 0),
            func.coalesce(func.sum(AggregatedProduct.total_quantity * AggregatedProduct.standard_price), 0),
            func.coalesce(func.sum(AggregatedProduct.farmer_count), 0),
        ).where(AggregatedProduct.total_quantity > 0)
    ).one()
    return {
        'total_products': row[0],
        'total_quantity': row[1],
        'total_value': round(row[2], 2),
        'total_farmers': row[3],
    }
