"""Documents blueprint: saved estimates and invoices (list, detail, PDF, conversion, payments)."""
from flask import Blueprint, jsonify, request, send_file, current_app

from fieldservice.blueprints.metrics import payments_recorded_total, record_document_saved
from fieldservice.database import get_session
from fieldservice.exceptions import NotFoundError
from fieldservice.models import DOCUMENT_MODELS, DocumentCommunication, Job
from fieldservice.services.delivery_service import business_info_from_config
from fieldservice.services.document_service import (
    list_documents,
    load_document,
    convert_estimate_to_invoice,
    convert_invoice_to_estimate,
    record_payment,
)
from fieldservice.services.pdf_service import render_document_pdf, pdf_filename

documents_bp = Blueprint('documents', __name__, url_prefix='/documents')


def _check_type(document_type: str) -> None:
    if document_type not in DOCUMENT_MODELS:
        raise NotFoundError(f"Unknown document type '{document_type}'.")


@documents_bp.route('/')
def list_all():
    """List documents. Query params: job_id, type (estimate|invoice), status."""
    session = get_session()
    document_type = request.args.get('type') or None
    if document_type:
        _check_type(document_type)
    status = request.args.get('status')

    documents = list_documents(session, job_id=request.args.get('job_id'), document_type=document_type)
    if status:
        documents = [d for d in documents if d.status == status]

    return jsonify({
        'status': 'success',
        'documents': [
            {
                'id': d.id,
                'document_type': d.document_type,
                'number': d.number,
                'job_id': d.job_id,
                'status': d.status,
                'total': float(d.total),
                'balance': float(d.balance) if d.document_type == 'invoice' else None,
                'created_at': d.created_at.isoformat() if d.created_at else None,
            }
            for d in documents
        ],
    })


@documents_bp.route('/<document_type>/<document_id>')
def detail(document_type, document_id):
    _check_type(document_type)
    document = load_document(get_session(), document_type, document_id)
    return jsonify({'status': 'success', 'document': document.to_dict()})


@documents_bp.route('/<document_type>/<document_id>/pdf')
def pdf(document_type, document_id):
    _check_type(document_type)
    session = get_session()
    document = load_document(session, document_type, document_id)
    job = session.get(Job, document.job_id)
    client_info = {}
    if job and job.client:
        client_info = {'name': job.client.name, 'address': job.client.address or job.address}

    buffer = render_document_pdf(document, business_info_from_config(current_app.config), client_info)
    return send_file(
        buffer,
        mimetype='application/pdf',
        as_attachment=request.args.get('download') == '1',
        download_name=pdf_filename(document)
    )


@documents_bp.route('/<document_type>/<document_id>/convert', methods=['POST'])
def convert(document_type, document_id):
    """Estimate -> invoice, or invoice -> estimate. The source is marked converted."""
    _check_type(document_type)
    session = get_session()
    if document_type == 'estimate':
        created = convert_estimate_to_invoice(session, document_id)
    else:
        created = convert_invoice_to_estimate(session, document_id)
    record_document_saved(created.document_type, 'convert')
    current_app.logger.info(f"[DOCUMENTS] {document_type} {document_id} converted to {created.number}")
    return jsonify({'status': 'success', 'document': created.to_dict()}), 201


@documents_bp.route('/invoice/<invoice_id>/payments', methods=['POST'])
def add_payment(invoice_id):
    """Body: {"amount": 100, "method": "card", "reference": "...", "notes": "..."}"""
    data = request.get_json(silent=True) or {}
    session = get_session()
    invoice = record_payment(
        session,
        invoice_id,
        data.get('amount'),
        method=data.get('method') or 'cash',
        reference=data.get('reference'),
        notes=data.get('notes'),
    )
    payments_recorded_total.inc()
    return jsonify({'status': 'success', 'document': invoice.to_dict()}), 201


@documents_bp.route('/<document_type>/<document_id>/communications')
def communications(document_type, document_id):
    """Delivery log for a document, newest first."""
    _check_type(document_type)
    session = get_session()
    load_document(session, document_type, document_id)
    rows = session.query(DocumentCommunication).filter_by(
        document_type=document_type, document_id=document_id
    ).order_by(DocumentCommunication.created_at.desc()).all()
    return jsonify({
        'status': 'success',
        'communications': [
            {
                'id': c.id,
                'channel': c.channel,
                'recipient': c.recipient,
                'status': c.status,
                'error_message': c.error_message,
                'created_at': c.created_at.isoformat() if c.created_at else None,
                'sent_at': c.sent_at.isoformat() if c.sent_at else None,
            }
            for c in rows
        ],
    })
