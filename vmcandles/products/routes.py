# vmcandles/products/routes.py
from flask import Blueprint, request, jsonify, current_app
from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import Product, ProductTranslation, ProductCategoryEnum, LanguageEnum
from ..utils import (
    json_body, sanitize_input, error_response, validation_error_response, pagination_dict,
    parse_bool_arg, parse_int_arg, admin_required, current_user_id
)
from ..validation import validate_product

products_bp = Blueprint('products_bp', __name__, url_prefix='/api/products')

SORTABLE_FIELDS = {
    'sort_order': Product.sort_order,
    'price': Product.price,
    'created_at': Product.created_at,
}
EDITABLE_FIELDS = ('image', 'images', 'in_stock', 'stock', 'low_stock_threshold', 'track_inventory',
                   'featured', 'sort_order', 'burn_time', 'size')


def parse_language(value, default=LanguageEnum.ES):
    """LanguageEnum for a query/path value; None when the value is not a supported language."""
    if not value: return default
    try:
        return LanguageEnum(str(value).upper())
    except ValueError:
        return None

def _apply_translation(product, language, data):
    translation = product.translation_for(language)
    if translation is None:
        translation = ProductTranslation(product_id=product.id, language=language)
        db.session.add(translation)
    if 'name' in data: translation.name = sanitize_input(data['name'], max_length=150)
    if 'description' in data: translation.description = sanitize_input(data['description'])
    if 'long_description' in data: translation.long_description = sanitize_input(data['long_description'])
    if 'features' in data: translation.features = [sanitize_input(f, max_length=255) for f in (data['features'] or [])]
    return translation


@products_bp.route('', methods=['GET'])
def get_products():
    language = parse_language(request.args.get('language')) or LanguageEnum.ES
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    try:
        query = Product.query
        category = request.args.get('category')
        if category:
            try:
                query = query.filter(Product.category == ProductCategoryEnum(category.upper()))
            except ValueError:
                return error_response('INVALID_CATEGORY', f"Unknown category '{category}'", 400)
        featured = parse_bool_arg(request.args.get('featured'))
        if featured is not None:
            query = query.filter(Product.featured.is_(featured))
        in_stock = parse_bool_arg(request.args.get('in_stock'))
        if in_stock is not None:
            query = query.filter(Product.in_stock.is_(in_stock))

        sort_column = SORTABLE_FIELDS.get(request.args.get('sort_by', 'sort_order'), Product.sort_order)
        if request.args.get('sort_order', 'asc').lower() == 'desc':
            query = query.order_by(sort_column.desc(), Product.id)
        else:
            query = query.order_by(sort_column.asc(), Product.id)

        pagination = query.paginate(page=page, per_page=limit, error_out=False)
        return jsonify(
            success=True,
            products=[p.to_dict(language=language) for p in pagination.items],
            pagination=pagination_dict(page, limit, pagination.total),
        )
    except Exception as e:
        current_app.logger.error(f"Error fetching products: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to fetch products", 500)


@products_bp.route('/<string:product_id>', methods=['GET'])
def get_product(product_id):
    language = parse_language(request.args.get('language')) or LanguageEnum.ES
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    return jsonify(success=True, product=product.to_dict(language=language, include_translations=True))


@products_bp.route('/<string:product_id>/translations', methods=['GET'])
def get_product_translations(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    translations = product.translations.order_by(ProductTranslation.language).all()
    return jsonify(success=True, translations=[t.to_dict() for t in translations])


# --- Admin ---
@products_bp.route('', methods=['POST'])
@admin_required
def create_product():
    data = json_body()
    errors = validate_product(data)
    if errors:
        return validation_error_response(errors)

    product_id = sanitize_input(data['id'], max_length=50)
    if db.session.get(Product, product_id):
        return error_response('PRODUCT_EXISTS', "A product with this id already exists", 400)
    try:
        product = Product(
            id=product_id,
            category=ProductCategoryEnum(data['category'].upper()),
            price=float(data['price']),
            stock=0,
            in_stock=True,
        )
        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(product, field, data[field])
        db.session.add(product)
        db.session.flush()
        for entry in data.get('translations') or []:
            language = parse_language(entry.get('language'), default=None)
            if language is None or not entry.get('name'):
                db.session.rollback()
                return error_response('INVALID_LANGUAGE', "Each translation needs a supported language and a name", 400)
            _apply_translation(product, language, entry)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('PRODUCT_EXISTS', "A product with this id already exists", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to create product", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='create_product', target_type='product', target_id=product.id)
    return jsonify(success=True, message="Product created successfully", product=product.to_dict(include_translations=True)), 201


@products_bp.route('/<string:product_id>', methods=['PUT'])
@admin_required
def update_product(product_id):
    data = json_body()
    errors = validate_product(data, partial=True)
    if errors:
        return validation_error_response(errors)

    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    try:
        if data.get('category'): product.category = ProductCategoryEnum(data['category'].upper())
        if data.get('price') is not None: product.price = float(data['price'])
        for field in EDITABLE_FIELDS:
            if field in data:
                setattr(product, field, data[field])
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update product", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='update_product', target_type='product', target_id=product_id)
    return jsonify(success=True, message="Product updated successfully", product=product.to_dict(include_translations=True))


@products_bp.route('/<string:product_id>', methods=['DELETE'])
@admin_required
def delete_product(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    try:
        # Order history keeps its snapshot; only the link to the product is dropped
        for item in product.order_items.all():
            item.product_id = None
        db.session.delete(product)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to delete product", 500)

    current_app.audit_log_service.log_action(user_id=current_user_id(), action='delete_product', target_type='product', target_id=product_id)
    return jsonify(success=True, message="Product deleted successfully")


@products_bp.route('/<string:product_id>/translations/<string:language>', methods=['PUT'])
@admin_required
def upsert_translation(product_id, language):
    lang = parse_language(language, default=None)
    if lang is None:
        return error_response('INVALID_LANGUAGE', f"Unsupported language '{language}'", 400)
    data = json_body()
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    if product.translation_for(lang) is None and not data.get('name'):
        return validation_error_response([{"field": "name", "message": "name is required"}])
    try:
        translation = _apply_translation(product, lang, data)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error saving {lang.value} translation for product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to save translation", 500)
    return jsonify(success=True, message="Translation saved successfully", translation=translation.to_dict())


@products_bp.route('/<string:product_id>/audio', methods=['PUT'])
@admin_required
def set_product_audio(product_id):
    data = json_body()
    if not data.get('audio_url'):
        return error_response('INVALID_AUDIO_DATA', "audio_url is required", 400)
    duration = data.get('audio_duration')
    if duration is not None and (isinstance(duration, bool) or not isinstance(duration, int) or duration < 0):
        return error_response('INVALID_AUDIO_DATA', "audio_duration must be a non-negative integer", 400)
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    try:
        product.audio_url = sanitize_input(data['audio_url'], max_length=255)
        product.audio_title = sanitize_input(data.get('audio_title'), max_length=150)
        product.audio_duration = duration
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error setting audio for product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update product audio", 500)
    return jsonify(success=True, message="Product audio updated", product=product.to_dict())


@products_bp.route('/<string:product_id>/audio', methods=['DELETE'])
@admin_required
def remove_product_audio(product_id):
    product = db.session.get(Product, product_id)
    if not product:
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    try:
        product.audio_url = None
        product.audio_title = None
        product.audio_duration = None
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error removing audio for product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to remove product audio", 500)
    return jsonify(success=True, message="Product audio removed", product=product.to_dict())
