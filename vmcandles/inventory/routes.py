# vmcandles/inventory/routes.py
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import func

from .. import db
from ..models import Product, ProductCategoryEnum, LanguageEnum
from ..utils import (
    json_body, error_response, pagination_dict, parse_bool_arg, parse_int_arg,
    admin_required, current_user_id, isoformat_or_none
)

inventory_bp = Blueprint('inventory_bp', __name__, url_prefix='/api/admin/inventory')

SORTABLE_FIELDS = {
    'stock': Product.stock,
    'price': Product.price,
    'low_stock_threshold': Product.low_stock_threshold,
    'updated_at': Product.updated_at,
    'id': Product.id,
}


def _inventory_dict(product):
    translation = product.translation_for(LanguageEnum.EN)
    return {
        "id": product.id,
        "name": translation.name if translation else 'Untranslated',
        "category": product.category.value,
        "price": product.price,
        "image": product.image,
        "stock": product.stock,
        "low_stock_threshold": product.low_stock_threshold,
        "track_inventory": product.track_inventory,
        "stock_status": product.stock_status,
        "in_stock": product.in_stock,
        "total_orders": product.order_items.count(),
        "featured": product.featured,
        "updated_at": isoformat_or_none(product.updated_at),
    }

def _non_negative_int(value):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


@inventory_bp.route('', methods=['GET'])
@admin_required
def get_inventory():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 50, maximum=200)
    try:
        query = Product.query
        category = request.args.get('category')
        if category:
            try:
                query = query.filter(Product.category == ProductCategoryEnum(category.upper()))
            except ValueError:
                return error_response('INVALID_CATEGORY', f"Unknown category '{category}'", 400)
        track_inventory = parse_bool_arg(request.args.get('track_inventory'))
        if track_inventory is not None:
            query = query.filter(Product.track_inventory.is_(track_inventory))

        stock_status = request.args.get('stock_status')
        if stock_status == 'out-of-stock':
            query = query.filter(Product.stock == 0)
        elif stock_status == 'low-stock':
            query = query.filter(Product.stock > 0, Product.stock <= Product.low_stock_threshold)
        elif stock_status == 'in-stock':
            query = query.filter(Product.stock > Product.low_stock_threshold)

        sort_column = SORTABLE_FIELDS.get(request.args.get('sort_by', 'stock'), Product.stock)
        if request.args.get('sort_order', 'asc').lower() == 'desc':
            query = query.order_by(sort_column.desc(), Product.id)
        else:
            query = query.order_by(sort_column.asc(), Product.id)

        pagination = query.paginate(page=page, per_page=limit, error_out=False)
        return jsonify(success=True, products=[_inventory_dict(p) for p in pagination.items],
                       pagination=pagination_dict(page, limit, pagination.total))
    except Exception as e:
        current_app.logger.error(f"Error fetching inventory: {e}", exc_info=True)
        return error_response('FETCH_INVENTORY_FAILED', "Failed to fetch inventory", 500)


@inventory_bp.route('/low-stock', methods=['GET'])
@admin_required
def get_low_stock():
    products = Product.query.filter(
        Product.track_inventory.is_(True),
        Product.stock > 0,
        Product.stock <= Product.low_stock_threshold
    ).order_by(Product.stock.asc(), Product.id).all()
    return jsonify(success=True, products=[_inventory_dict(p) for p in products], count=len(products))


@inventory_bp.route('/stats', methods=['GET'])
@admin_required
def get_inventory_stats():
    try:
        tracked = Product.query.filter(Product.track_inventory.is_(True))
        total_value = db.session.query(func.coalesce(func.sum(Product.price * Product.stock), 0))\
            .filter(Product.track_inventory.is_(True)).scalar()
        by_category = db.session.query(
            Product.category, func.count(Product.id), func.coalesce(func.sum(Product.stock), 0)
        ).filter(Product.track_inventory.is_(True)).group_by(Product.category).all()
        return jsonify(success=True, stats={
            "total_products": Product.query.count(),
            "tracking_inventory": tracked.count(),
            "out_of_stock": tracked.filter(Product.stock == 0).count(),
            "low_stock": tracked.filter(Product.stock > 0, Product.stock <= Product.low_stock_threshold).count(),
            "in_stock": tracked.filter(Product.stock > Product.low_stock_threshold).count(),
            "total_stock_value": round(float(total_value), 2),
            "by_category": [
                {"category": category.value, "product_count": count, "total_stock": int(stock)}
                for category, count, stock in by_category
            ],
        })
    except Exception as e:
        current_app.logger.error(f"Error fetching inventory stats: {e}", exc_info=True)
        return error_response('FETCH_STATS_FAILED', "Failed to fetch inventory statistics", 500)


@inventory_bp.route('/<string:product_id>', methods=['PATCH'])
@admin_required
def update_inventory(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    data = json_body()

    stock = data.get('stock')
    if stock is not None and _non_negative_int(stock) is None:
        return error_response('INVALID_STOCK', "Stock must be a non-negative integer", 400)
    threshold = data.get('low_stock_threshold')
    if threshold is not None and _non_negative_int(threshold) is None:
        return error_response('INVALID_THRESHOLD', "Low stock threshold must be a non-negative integer", 400)

    old_stock = product.stock
    try:
        if stock is not None:
            product.stock = stock
            product.in_stock = stock > 0
        if threshold is not None:
            product.low_stock_threshold = threshold
        if isinstance(data.get('track_inventory'), bool):
            product.track_inventory = data['track_inventory']
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating inventory for {product_id}: {e}", exc_info=True)
        return error_response('UPDATE_INVENTORY_FAILED', "Failed to update inventory", 500)

    note = data.get('adjustment_note')
    current_app.logger.info(f"Product inventory updated: {product_id} stock {old_stock} -> {product.stock} (note: {note})")
    current_app.audit_log_service.log_action(
        user_id=current_user_id(), action='update_inventory', target_type='product', target_id=product_id,
        details=f"Stock {old_stock} -> {product.stock}" + (f". Note: {note}" if note else "")
    )
    return jsonify(success=True, product=_inventory_dict(product))
