# vmcandles/invoices/routes.py
import os

from flask import Blueprint, request, jsonify, current_app, send_file, g
from flask_jwt_extended import jwt_required

from .. import db
from ..models import Invoice, Order, PaymentStatusEnum
from ..services.invoice_service import InvoiceService
from ..utils import error_response, pagination_dict, parse_int_arg, admin_required, current_user_id, json_body

invoices_bp = Blueprint('invoices_bp', __name__, url_prefix='/api/invoices')


def _visible_to_caller(user_id):
    return user_id == current_user_id() or g.is_admin


@invoices_bp.route('/generate', methods=['POST'])
@jwt_required()
def generate_invoice():
    data = json_body()
    order_id = data.get('order_id')
    if not order_id:
        return error_response('MISSING_ORDER_ID', "order_id is required", 400)

    order = db.session.get(Order, str(order_id))
    if not order or not _visible_to_caller(order.user_id):
        return error_response('ORDER_NOT_FOUND', "Order not found", 404)
    if order.payment_status != PaymentStatusEnum.PAID:
        return error_response('ORDER_NOT_PAID', "Invoices can only be generated for paid orders", 400)

    try:
        invoice, created = InvoiceService.get_or_create_for_order(order)
        if created:
            db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error generating invoice for order {order.id}: {e}", exc_info=True)
        return error_response('INVOICE_GENERATION_ERROR', "Failed to generate invoice", 500)

    if not created:
        return jsonify(success=True, message="Invoice already exists", invoice=invoice.to_dict())
    current_app.audit_log_service.log_action(
        user_id=current_user_id(), action='generate_invoice', target_type='invoice', target_id=invoice.id,
        details=f"Invoice {invoice.invoice_number} for order {order.id}"
    )
    return jsonify(success=True, message="Invoice generated successfully", invoice=invoice.to_dict()), 201


@invoices_bp.route('/<int:invoice_id>/pdf', methods=['GET'])
@jwt_required()
def download_invoice_pdf(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        return error_response('INVOICE_NOT_FOUND', "Invoice not found", 404)
    if not _visible_to_caller(invoice.user_id):
        return error_response('FORBIDDEN', "You do not have access to this invoice", 403)
    pdf_path = invoice.pdf_path or InvoiceService.pdf_full_path(invoice)
    if not os.path.exists(pdf_path):
        current_app.logger.warning(f"PDF file missing for invoice {invoice.invoice_number} at {pdf_path}")
        return error_response('PDF_NOT_FOUND', "Invoice PDF not found", 404)
    return send_file(pdf_path, mimetype='application/pdf', as_attachment=True,
                     download_name=f"{invoice.invoice_number}.pdf")


@invoices_bp.route('/<int:invoice_id>', methods=['GET'])
@jwt_required()
def get_invoice(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice or not _visible_to_caller(invoice.user_id):
        return error_response('INVOICE_NOT_FOUND', "Invoice not found", 404)
    return jsonify(success=True, invoice=invoice.to_dict())


@invoices_bp.route('/order/<string:order_id>', methods=['GET'])
@jwt_required()
def get_invoice_for_order(order_id):
    invoice = Invoice.query.filter_by(order_id=order_id).first()
    if not invoice or not _visible_to_caller(invoice.user_id):
        return error_response('INVOICE_NOT_FOUND', "Invoice not found", 404)
    return jsonify(success=True, invoice=invoice.to_dict())


@invoices_bp.route('/admin/all', methods=['GET'])
@admin_required
def admin_get_invoices():
    page = parse_int_arg(request.args.get('page'), 1)
    limit = parse_int_arg(request.args.get('limit'), 20, maximum=100)
    pagination = Invoice.query.order_by(Invoice.issued_at.desc(), Invoice.id.desc())\
        .paginate(page=page, per_page=limit, error_out=False)
    return jsonify(success=True, invoices=[i.to_dict() for i in pagination.items],
                   pagination=pagination_dict(page, limit, pagination.total))
