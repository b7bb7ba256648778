# vmcandles/services/invoice_service.py
import os
from flask import current_app
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle

from .. import db
from ..models import Invoice, Order, CustomerTypeEnum, InvoiceStatusEnum, PaymentStatusEnum
from ..utils import utcnow


def _money(value):
    return f"${(value or 0):,.0f}".replace(',', '.')


class InvoiceService:
    """Creates invoices for paid orders and renders their PDF."""

    @staticmethod
    def _next_invoice_number():
        next_id = Invoice.query.count() + 1
        number = f"INV-{next_id:06d}"
        while Invoice.query.filter_by(invoice_number=number).first() is not None:
            next_id += 1
            number = f"INV-{next_id:06d}"
        return number

    @staticmethod
    def get_or_create_for_order(order: Order):
        """
        Returns (invoice, created). An order has at most one invoice; a second call
        returns the existing one untouched.

        Raises:
            ValueError: If the order is not paid.
        """
        existing = Invoice.query.filter_by(order_id=order.id).first()
        if existing:
            return existing, False
        if order.payment_status != PaymentStatusEnum.PAID:
            raise ValueError(f"Order {order.id} is not paid.")

        invoice = Invoice(
            invoice_number=InvoiceService._next_invoice_number(),
            order_id=order.id,
            user_id=order.user_id,
            customer_type=CustomerTypeEnum.BUSINESS if order.customer_tax_id else CustomerTypeEnum.INDIVIDUAL,
            customer_name=order.customer_name,
            customer_tax_id=order.customer_tax_id or '',
            customer_email=order.customer_email,
            customer_address=", ".join(filter(None, [order.shipping_street, order.shipping_city,
                                                     order.shipping_postal_code, order.shipping_country])),
            items=[{
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": item.price,
                "total": round(item.price * item.quantity, 2),
            } for item in order.items],
            subtotal=order.subtotal,
            tax_amount=0.0,
            shipping_cost=order.shipping_cost,
            total=order.total,
            status=InvoiceStatusEnum.ISSUED,
            issued_at=utcnow(),
        )
        db.session.add(invoice)
        db.session.flush()
        invoice.pdf_url = f"/api/invoices/{invoice.id}/pdf"
        invoice.pdf_path = InvoiceService.render_pdf(invoice, order)
        current_app.logger.info(f"Created invoice {invoice.invoice_number} for order {order.id}.")
        return invoice, True

    @staticmethod
    def pdf_full_path(invoice: Invoice):
        return os.path.join(current_app.config['INVOICE_PDF_PATH'], f"{invoice.id}.pdf")

    @staticmethod
    def render_pdf(invoice: Invoice, order: Order):
        """Writes the A4 invoice PDF and returns its absolute path."""
        pdf_dir = current_app.config['INVOICE_PDF_PATH']
        os.makedirs(pdf_dir, exist_ok=True)
        pdf_path = InvoiceService.pdf_full_path(invoice)
        company = current_app.config.get('DEFAULT_COMPANY_INFO', {})

        styles = getSampleStyleSheet()
        style_normal = ParagraphStyle('Invoice_Normal', parent=styles['Normal'], fontName='Helvetica', fontSize=10, leading=13)
        style_company = ParagraphStyle('Invoice_Company', parent=style_normal, fontName='Helvetica-Bold', fontSize=18, leading=22)
        style_doc_title = ParagraphStyle('Invoice_Title', parent=style_normal, fontName='Helvetica-Bold', fontSize=14, leading=18)
        style_section = ParagraphStyle('Invoice_Section', parent=style_normal, fontName='Helvetica-Bold', fontSize=12, leading=15)
        style_footer = ParagraphStyle('Invoice_Footer', parent=style_normal, fontSize=8, alignment=1, textColor=colors.grey)

        doc = SimpleDocTemplate(pdf_path, pagesize=A4, leftMargin=18*mm, rightMargin=18*mm, topMargin=18*mm, bottomMargin=18*mm)
        story = []

        company_block = [
            Paragraph(company.get('name', 'V&amp;M CANDLE EXPERIENCE').replace('&', '&amp;'), style_company),
            Paragraph(company.get('tagline', ''), style_normal),
            Paragraph(company.get('city_country', ''), style_normal),
            Paragraph(company.get('email', ''), style_normal),
        ]
        issued = invoice.issued_at or utcnow()
        invoice_block = [
            Paragraph("FACTURA / INVOICE", style_doc_title),
            Paragraph(f"N°: {invoice.invoice_number}", style_normal),
            Paragraph(f"Fecha: {issued.strftime('%d-%m-%Y')}", style_normal),
            Paragraph(f"Orden: {order.id}", style_normal),
        ]
        header = Table([[company_block, invoice_block]], colWidths=[110*mm, 64*mm])
        header.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LINEBELOW', (0, 0), (-1, 0), 0.75, colors.black),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ]))
        story.append(header)
        story.append(Spacer(1, 6*mm))

        customer_block = [
            Paragraph("CLIENTE / CUSTOMER", style_section),
            Paragraph(f"Nombre: {order.customer_name}", style_normal),
            Paragraph(f"Email: {order.customer_email}", style_normal),
            Paragraph(f"Teléfono: {order.customer_phone or '-'}", style_normal),
        ]
        if order.customer_tax_id:
            customer_block.append(Paragraph(f"RUT: {order.customer_tax_id}", style_normal))
        shipping_block = [
            Paragraph("DIRECCIÓN DE ENVÍO", style_section),
            Paragraph(order.shipping_street or '', style_normal),
            Paragraph(f"{order.shipping_city or ''}, {order.shipping_postal_code or ''}", style_normal),
            Paragraph(order.shipping_country or '', style_normal),
        ]
        parties = Table([[customer_block, shipping_block]], colWidths=[87*mm, 87*mm])
        parties.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LINEBELOW', (0, 0), (-1, 0), 0.75, colors.black),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
        ]))
        story.append(parties)
        story.append(Spacer(1, 6*mm))

        rows = [["PRODUCTO", "CANTIDAD", "PRECIO", "SUBTOTAL"]]
        for item in invoice.items or []:
            rows.append([
                Paragraph(item["product_name"], style_normal),
                str(item["quantity"]),
                _money(item["unit_price"]),
                _money(item["total"]),
            ])
        items_table = Table(rows, colWidths=[86*mm, 26*mm, 30*mm, 32*mm], repeatRows=1)
        items_table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('LINEBELOW', (0, 0), (-1, 0), 0.75, colors.black),
            ('LINEBELOW', (0, -1), (-1, -1), 0.75, colors.black),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]))
        story.append(items_table)
        story.append(Spacer(1, 4*mm))

        totals = Table([
            ["Subtotal:", _money(invoice.subtotal)],
            ["Envío:", _money(invoice.shipping_cost)],
            ["TOTAL:", _money(invoice.total)],
        ], colWidths=[30*mm, 32*mm], hAlign='RIGHT')
        totals.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
            ('FONTNAME', (0, 2), (-1, 2), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 2), (-1, 2), 12),
        ]))
        story.append(totals)
        story.append(Spacer(1, 15*mm))
        story.append(Paragraph("Gracias por su compra / Thank you for your purchase", style_footer))

        try:
            doc.build(story)
        except Exception as e:
            current_app.logger.error(f"Failed to generate PDF for invoice {invoice.invoice_number}: {e}", exc_info=True)
            raise
        current_app.logger.info(f"PDF generated for invoice {invoice.invoice_number} at {pdf_path}")
        return pdf_path
