"""PDF rendering for estimates and invoices (customer-facing: never shows cost or margin)."""

from datetime import datetime
from io import BytesIO
from typing import Dict, Any
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import LETTER
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER

from fieldservice.utils.formatters import format_money, format_percent, format_date

TITLES = {
    'estimate': 'ESTIMATE',
    'invoice': 'INVOICE',
}


def _quantity_str(qty) -> str:
    return str(int(qty)) if qty % 1 == 0 else f"{qty:.2f}"


def render_document_pdf(document, business_info: Dict[str, Any], client_info: Dict[str, Any] = None) -> BytesIO:
    """
    Render a saved document (SavedDocument) to PDF.

    business_info: name, address, phone, email.
    client_info: name, email, phone, address.
    """
    client_info = client_info or {}
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=LETTER,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch,
        title=f"{TITLES[document.document_type].title()} {document.number}"
    )

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'DocumentTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#2C3E50'),
        spaceAfter=12,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )

    header_style = ParagraphStyle(
        'DocumentHeader',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#7F8C8D'),
        alignment=TA_CENTER,
        spaceAfter=6
    )

    cell_style = ParagraphStyle('Cell', parent=styles['Normal'], fontSize=9, leading=11)

    # 1. Title and business header
    elements.append(Paragraph(TITLES[document.document_type], title_style))

    if business_info.get('name'):
        elements.append(Paragraph(f"<b>{escape(business_info['name'])}</b>", header_style))
    if business_info.get('address'):
        elements.append(Paragraph(escape(business_info['address']), header_style))

    contact_parts = []
    if business_info.get('phone'):
        contact_parts.append(f"Tel: {business_info['phone']}")
    if business_info.get('email'):
        contact_parts.append(f"Email: {business_info['email']}")
    if contact_parts:
        elements.append(Paragraph(escape(" | ".join(contact_parts)), header_style))

    elements.append(Spacer(1, 0.3*inch))

    # 2. Document metadata
    number_label = 'Estimate #:' if document.document_type == 'estimate' else 'Invoice #:'
    issued = document.issue_date or document.created_at or datetime.now()
    info_data = [
        [number_label, document.number],
        ['Date:', format_date(issued)],
    ]
    if document.document_type == 'estimate' and document.valid_until:
        info_data.append(['Valid Until:', format_date(document.valid_until)])
    if document.document_type == 'invoice' and document.due_date:
        info_data.append(['Due Date:', format_date(document.due_date)])
    if client_info.get('name'):
        info_data.append(['Bill To:', client_info['name']])
    if client_info.get('address'):
        info_data.append(['Address:', client_info['address']])

    info_table = Table(info_data, colWidths=[2*inch, 3.5*inch])
    info_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('ALIGN', (1, 0), (1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#34495E')),
    ]))
    elements.append(info_table)
    elements.append(Spacer(1, 0.3*inch))

    # 3. Items
    table_data = [['Description', 'Qty', 'Unit Price', 'Disc.', 'Amount']]
    for item in document.items:
        description = escape(item.description or '-')
        if not item.taxable:
            description += ' <font size="7" color="#7F8C8D">(non-taxable)</font>'
        table_data.append([
            Paragraph(description, cell_style),
            _quantity_str(item.quantity),
            format_money(item.unit_price),
            format_percent(item.discount) if item.discount else '',
            format_money(item.total),
        ])

    items_table = Table(table_data, colWidths=[3.2*inch, 0.6*inch, 1*inch, 0.6*inch, 1.1*inch], repeatRows=1)
    items_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#3498DB')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('BOTTOMPADDING', (0, 0), (-1, 0), 12),
        ('VALIGN', (0, 1), (-1, -1), 'TOP'),
        ('ALIGN', (1, 1), (1, -1), 'CENTER'),
        ('ALIGN', (2, 1), (-1, -1), 'RIGHT'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#BDC3C7')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#ECF0F1')]),
    ]))
    elements.append(items_table)
    elements.append(Spacer(1, 0.2*inch))

    # 4. Totals
    totals_data = [
        ['Subtotal:', format_money(document.subtotal)],
        [f"Tax ({format_percent(document.tax_rate)}):", format_money(document.tax_amount)],
        ['TOTAL:', format_money(document.total)],
    ]
    if document.document_type == 'invoice' and document.amount_paid:
        totals_data.append(['Paid:', format_money(document.amount_paid)])
        totals_data.append(['Balance Due:', format_money(document.balance)])

    total_row = 2
    totals_table = Table(totals_data, colWidths=[5.3*inch, 1.2*inch])
    totals_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('FONTNAME', (0, total_row), (-1, total_row), 'Helvetica-Bold'),
        ('FONTSIZE', (0, total_row), (-1, total_row), 13),
        ('TEXTCOLOR', (0, total_row), (-1, total_row), colors.HexColor('#27AE60')),
        ('LINEABOVE', (0, total_row), (-1, total_row), 1.5, colors.HexColor('#27AE60')),
    ]))
    elements.append(totals_table)
    elements.append(Spacer(1, 0.4*inch))

    footer_style = ParagraphStyle('Footer', parent=styles['Normal'], fontSize=9, textColor=colors.HexColor('#95A5A6'), alignment=TA_CENTER)
    if document.document_type == 'estimate':
        footer_text = "This estimate is not an invoice. Prices are valid until the date shown above."
    else:
        footer_text = "Thank you for your business."
    if document.notes:
        footer_text += f"<br/><br/><b>Notes:</b> {escape(document.notes).replace(chr(10), '<br/>')}"
    elements.append(Paragraph(footer_text, footer_style))

    doc.build(elements)
    buffer.seek(0)
    return buffer


def pdf_filename(document) -> str:
    return f"{document.number}.pdf"
