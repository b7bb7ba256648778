# vmcandles/admin_api/dashboard_routes.py
# Sales and customer analytics for the admin panel

from datetime import timedelta

from flask import request, jsonify, current_app
from sqlalchemy import func, or_

from . import admin_api_bp
from .. import db
from ..models import (
    User, Profile, Order, OrderItem, Product, UserRoleEnum,
    OrderStatusEnum, PaymentStatusEnum
)
from ..utils import (
    error_response, pagination_dict, parse_int_arg, admin_required,
    utcnow, start_of_month, isoformat_or_none
)


def _paid_revenue(*criteria):
    total = db.session.query(func.coalesce(func.sum(Order.total), 0))\
        .filter(Order.payment_status == PaymentStatusEnum.PAID, *criteria).scalar()
    return float(total or 0)

def _growth(current, previous):
    if not previous:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)

def _customer_stats(user_id):
    """(total_orders, total_spent, last_order_date) for one customer; spend counts PAID orders only."""
    total_orders, last_order = db.session.query(func.count(Order.id), func.max(Order.created_at))\
        .filter(Order.user_id == user_id).one()
    total_spent = _paid_revenue(Order.user_id == user_id)
    return total_orders, total_spent, last_order


@admin_api_bp.route('/dashboard', methods=['GET'])
@admin_required
def get_dashboard():
    try:
        now = utcnow()
        this_month_start = start_of_month(now)
        last_month_start = start_of_month(now, months_back=1)
        # Weeks start on Sunday
        days_since_sunday = (now.weekday() + 1) % 7
        week_start = (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)

        total_revenue = _paid_revenue()
        revenue_this_month = _paid_revenue(Order.created_at >= this_month_start)
        revenue_last_month = _paid_revenue(Order.created_at >= last_month_start, Order.created_at < this_month_start)
        revenue_this_week = _paid_revenue(Order.created_at >= week_start)
        paid_orders = Order.query.filter(Order.payment_status == PaymentStatusEnum.PAID).count()

        by_status = {status.value: 0 for status in OrderStatusEnum}
        for status, count in db.session.query(Order.status, func.count(Order.id)).group_by(Order.status).all():
            by_status[status.value] = count

        customers_with_orders = db.session.query(func.count(func.distinct(Order.user_id))).scalar()

        top_rows = db.session.query(
            OrderItem.product_id, func.max(OrderItem.product_name),
            func.sum(OrderItem.quantity), func.sum(OrderItem.subtotal)
        ).join(Order, OrderItem.order_id == Order.id)\
            .filter(Order.payment_status == PaymentStatusEnum.PAID, OrderItem.product_id.isnot(None))\
            .group_by(OrderItem.product_id)\
            .order_by(func.sum(OrderItem.quantity).desc())\
            .limit(10).all()
        top_products = [
            {"product_id": pid, "name": name, "quantity_sold": int(qty or 0), "revenue": float(revenue or 0)}
            for pid, name, qty, revenue in top_rows
        ]

        category_rows = db.session.query(
            Product.category, func.sum(OrderItem.subtotal), func.sum(OrderItem.quantity)
        ).join(OrderItem, OrderItem.product_id == Product.id)\
            .join(Order, OrderItem.order_id == Order.id)\
            .filter(Order.payment_status == PaymentStatusEnum.PAID)\
            .group_by(Product.category).all()
        revenue_by_category = [
            {"category": category.value, "revenue": float(revenue or 0), "items_sold": int(qty or 0)}
            for category, revenue, qty in category_rows
        ]

        # Last 30 days of paid sales, one bucket per day including empty days
        window_start = (now - timedelta(days=29)).replace(hour=0, minute=0, second=0, microsecond=0)
        buckets = {}
        for day_offset in range(30):
            day = (window_start + timedelta(days=day_offset)).date().isoformat()
            buckets[day] = {"date": day, "revenue": 0.0, "orders": 0}
        recent_paid = Order.query.filter(
            Order.payment_status == PaymentStatusEnum.PAID, Order.created_at >= window_start
        ).all()
        for order in recent_paid:
            bucket = buckets.get(order.created_at.date().isoformat())
            if bucket:
                bucket["revenue"] += order.total
                bucket["orders"] += 1

        recent_orders = [
            {
                "id": o.id, "status": o.status.value, "payment_status": o.payment_status.value,
                "total": o.total, "customer_name": o.customer_name, "customer_email": o.customer_email,
                "item_count": len(o.items), "created_at": isoformat_or_none(o.created_at),
            }
            for o in Order.query.order_by(Order.created_at.desc()).limit(10).all()
        ]

        analytics = {
            "revenue": {
                "total": total_revenue,
                "this_month": revenue_this_month,
                "last_month": revenue_last_month,
                "this_week": revenue_this_week,
                "growth": _growth(revenue_this_month, revenue_last_month),
                "avg_order_value": round(total_revenue / paid_orders, 2) if paid_orders else 0,
            },
            "orders": {
                "total": Order.query.count(),
                "this_month": Order.query.filter(Order.created_at >= this_month_start).count(),
                "paid": paid_orders,
                "by_status": by_status,
            },
            "customers": {"total_with_orders": customers_with_orders},
            "top_products": top_products,
            "revenue_by_category": revenue_by_category,
            "sales_over_time": list(buckets.values()),
            "recent_orders": recent_orders,
        }
        return jsonify(success=True, analytics=analytics)
    except Exception as e:
        current_app.logger.error(f"Error building dashboard analytics: {e}", exc_info=True)
        return error_response('ANALYTICS_ERROR', "Failed to fetch analytics", 500)


@admin_api_bp.route('/customers', methods=['GET'])
@admin_required
def get_customers():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    try:
        query = User.query.outerjoin(Profile).filter(User.role == UserRoleEnum.USER)
        search = (request.args.get('search') or '').strip()
        if search:
            term_like = f"%{search}%"
            query = query.filter(or_(
                User.email.ilike(term_like), Profile.first_name.ilike(term_like), Profile.last_name.ilike(term_like)
            ))
        pagination = query.order_by(User.created_at.desc()).paginate(page=page, per_page=limit, error_out=False)

        customers = []
        for user in pagination.items:
            total_orders, total_spent, last_order = _customer_stats(user.id)
            profile = user.profile
            customers.append({
                "id": user.id,
                "email": user.email,
                "first_name": profile.first_name if profile else None,
                "last_name": profile.last_name if profile else None,
                "phone": profile.phone if profile else None,
                "customer_type": profile.customer_type.value if profile else None,
                "total_orders": total_orders,
                "total_spent": total_spent,
                "avg_order_value": round(total_spent / total_orders, 2) if total_orders else 0,
                "last_order_date": isoformat_or_none(last_order),
                "registration_date": isoformat_or_none(user.created_at),
                "account_status": 'active',
            })
        return jsonify(success=True, customers=customers, pagination=pagination_dict(page, limit, pagination.total))
    except Exception as e:
        current_app.logger.error(f"Error fetching customers: {e}", exc_info=True)
        return error_response('CUSTOMERS_FETCH_ERROR', "Failed to fetch customers", 500)


@admin_api_bp.route('/customers/<int:customer_id>', methods=['GET'])
@admin_required
def get_customer_details(customer_id):
    user = db.session.get(User, customer_id)
    if not user:
        return error_response('CUSTOMER_NOT_FOUND', "Customer not found", 404)
    try:
        orders = user.orders.order_by(Order.created_at.desc()).all()
        total_orders, lifetime_value, last_order = _customer_stats(user.id)
        paid_orders = [o for o in orders if o.payment_status == PaymentStatusEnum.PAID]

        customer = user.to_dict()
        customer["addresses"] = [a.to_dict() for a in user.addresses]
        customer["statistics"] = {
            "total_orders": total_orders,
            "paid_orders": len(paid_orders),
            "lifetime_value": lifetime_value,
            "avg_order_value": round(lifetime_value / len(paid_orders), 2) if paid_orders else 0,
            "last_order_date": isoformat_or_none(last_order),
            "first_order_date": isoformat_or_none(orders[-1].created_at) if orders else None,
        }
        customer["order_history"] = [
            {
                "id": o.id, "status": o.status.value, "payment_status": o.payment_status.value,
                "total": o.total, "item_count": len(o.items), "created_at": isoformat_or_none(o.created_at),
            }
            for o in orders
        ]
        return jsonify(success=True, customer=customer)
    except Exception as e:
        current_app.logger.error(f"Error fetching customer {customer_id}: {e}", exc_info=True)
        return error_response('CUSTOMER_FETCH_ERROR', "Failed to fetch customer details", 500)


@admin_api_bp.route('/customer-stats', methods=['GET'])
@admin_required
def get_customer_stats():
    try:
        total_customers = User.query.filter(User.role == UserRoleEnum.USER).count()
        new_this_month = User.query.filter(
            User.role == UserRoleEnum.USER, User.created_at >= start_of_month(utcnow())
        ).count()

        paid_counts = db.session.query(
            Order.user_id, func.count(Order.id), func.sum(Order.total)
        ).filter(Order.payment_status == PaymentStatusEnum.PAID).group_by(Order.user_id).all()
        customers_with_orders = len(paid_counts)
        repeat_customers = sum(1 for _, count, _ in paid_counts if count > 1)
        retention = round(repeat_customers / customers_with_orders * 100, 2) if customers_with_orders else 0

        top_customers = []
        for user_id, count, spent in sorted(paid_counts, key=lambda row: row[2] or 0, reverse=True)[:5]:
            user = db.session.get(User, user_id)
            if not user:
                continue
            top_customers.append({
                "id": user.id, "email": user.email,
                "name": user.profile.full_name if user.profile else user.email,
                "total_spent": float(spent or 0), "order_count": count,
            })

        return jsonify(success=True, stats={
            "total_customers": total_customers,
            "new_customers_this_month": new_this_month,
            "top_customers": top_customers,
            "customer_retention_rate": retention,
            "customers_with_orders": customers_with_orders,
            "repeat_customers": repeat_customers,
        })
    except Exception as e:
        current_app.logger.error(f"Error fetching customer stats: {e}", exc_info=True)
        return error_response('CUSTOMER_STATS_ERROR', "Failed to fetch customer statistics", 500)
