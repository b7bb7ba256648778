# vmcandles/reviews/routes.py
from flask import Blueprint, request, jsonify, current_app, g
from flask_jwt_extended import jwt_required
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from .. import db
from ..models import Product, ProductReview, Order, OrderItem, PaymentStatusEnum
from ..utils import sanitize_input, error_response, pagination_dict, parse_int_arg, current_user_id, json_body

reviews_bp = Blueprint('reviews_bp', __name__, url_prefix='/api')


def _parse_rating(value):
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
        return None
    return value

def has_purchased(user_id, product_id):
    """True when the user has a PAID order containing the product."""
    return db.session.query(OrderItem.id).join(Order, OrderItem.order_id == Order.id).filter(
        Order.user_id == user_id,
        Order.payment_status == PaymentStatusEnum.PAID,
        OrderItem.product_id == product_id
    ).first() is not None


@reviews_bp.route('/products/<string:product_id>/reviews', methods=['GET'])
def get_product_reviews(product_id):
    if not db.session.get(Product, product_id):
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 10, maximum=100)

    pagination = ProductReview.query.filter_by(product_id=product_id)\
        .order_by(ProductReview.created_at.desc(), ProductReview.id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)
    average, count = db.session.query(func.avg(ProductReview.rating), func.count(ProductReview.id))\
        .filter(ProductReview.product_id == product_id).one()
    return jsonify(
        success=True,
        reviews=[r.to_dict() for r in pagination.items],
        stats={"average_rating": round(float(average), 1) if average is not None else 0, "total_reviews": count},
        pagination=pagination_dict(page, limit, pagination.total),
    )


@reviews_bp.route('/products/<string:product_id>/reviews', methods=['POST'])
@jwt_required()
def create_review(product_id):
    user_id = current_user_id()
    data = json_body()
    rating = _parse_rating(data.get('rating'))
    if rating is None:
        return error_response('INVALID_RATING', "Rating must be an integer between 1 and 5", 400)
    if not db.session.get(Product, product_id):
        return error_response('PRODUCT_NOT_FOUND', "Product not found", 404)
    if ProductReview.query.filter_by(product_id=product_id, user_id=user_id).first():
        return error_response('REVIEW_EXISTS', "You have already reviewed this product", 400)
    try:
        review = ProductReview(
            product_id=product_id, user_id=user_id, rating=rating,
            comment=sanitize_input(data.get('comment'), max_length=2000),
            is_verified=has_purchased(user_id, product_id),
        )
        db.session.add(review)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return error_response('REVIEW_EXISTS', "You have already reviewed this product", 400)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating review for product {product_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to create review", 500)
    return jsonify(success=True, message="Review created successfully", review=review.to_dict()), 201


@reviews_bp.route('/reviews/my-reviews', methods=['GET'])
@jwt_required()
def get_my_reviews():
    reviews = ProductReview.query.filter_by(user_id=current_user_id()).order_by(ProductReview.created_at.desc()).all()
    return jsonify(success=True, reviews=[r.to_dict() for r in reviews])


@reviews_bp.route('/reviews/<int:review_id>', methods=['PUT'])
@jwt_required()
def update_review(review_id):
    review = db.session.get(ProductReview, review_id)
    if not review or review.user_id != current_user_id():
        return error_response('REVIEW_NOT_FOUND', "Review not found", 404)
    data = json_body()
    if 'rating' in data:
        rating = _parse_rating(data.get('rating'))
        if rating is None:
            return error_response('INVALID_RATING', "Rating must be an integer between 1 and 5", 400)
        review.rating = rating
    if 'comment' in data:
        review.comment = sanitize_input(data.get('comment'), max_length=2000)
    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating review {review_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to update review", 500)
    return jsonify(success=True, message="Review updated successfully", review=review.to_dict())


@reviews_bp.route('/reviews/<int:review_id>', methods=['DELETE'])
@jwt_required()
def delete_review(review_id):
    review = db.session.get(ProductReview, review_id)
    if not review or (review.user_id != current_user_id() and not g.is_admin):
        return error_response('REVIEW_NOT_FOUND', "Review not found", 404)
    try:
        db.session.delete(review)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting review {review_id}: {e}", exc_info=True)
        return error_response('SERVER_ERROR', "Failed to delete review", 500)
    return jsonify(success=True, message="Review deleted successfully")
