"""Builder blueprint: the estimate/invoice dialog as a JSON API.

One open session per (job, document type), kept in the app's BuilderRegistry.
Every response carries the workflow state and the notifications raised
while handling the request.
"""
from flask import Blueprint, jsonify, request, current_app

from fieldservice.builder import BUILDERS, BuilderRegistry, CancellationToken, Notifier
from fieldservice.database import get_session
from fieldservice.exceptions import NotFoundError, ValidationError
from fieldservice.models import Job
from fieldservice.services.catalog_service import get_product, get_products, list_upsell_products
from fieldservice.services.document_service import DocumentStore, load_document
from fieldservice.workflow import SteppedDocumentWorkflow

builder_bp = Blueprint('builder', __name__, url_prefix='/jobs/<job_id>/builder/<document_type>')


def _registry() -> BuilderRegistry:
    return current_app.extensions['builder_registry']


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _check_type(document_type: str) -> None:
    if document_type not in BUILDERS:
        raise NotFoundError(f"Unknown document type '{document_type}'.")


def _workflow(job_id: str, document_type: str) -> SteppedDocumentWorkflow:
    _check_type(document_type)
    return _registry().get(job_id, document_type)


def _respond(workflow: SteppedDocumentWorkflow, status_code: int = 200, **extra):
    body = {
        'status': 'success' if status_code < 400 else 'error',
        'workflow': workflow.to_dict(),
        'notifications': workflow.notifier.drain(),
    }
    body.update(extra)
    return jsonify(body), status_code


def _client_info(job: Job) -> dict:
    client = job.client
    if not client:
        return {}
    return {
        'id': client.id,
        'name': client.name,
        'email': client.email,
        'phone': client.phone,
    }


@builder_bp.route('', methods=['POST'])
def open_builder(job_id, document_type):
    """
    Open the dialog.

    JSON body (all optional):
        document_id: edit an existing document of this type
        source_estimate_id: (invoice) start from a copy of an estimate
        source_invoice_id: (estimate) start from a copy of an invoice
    """
    _check_type(document_type)
    session = get_session()
    job = session.get(Job, job_id)
    if not job:
        raise NotFoundError(f"Job {job_id} not found.")

    data = _payload()
    document = source_estimate = None
    if data.get('document_id'):
        document = load_document(session, document_type, data['document_id'])
    elif document_type == 'invoice' and data.get('source_estimate_id'):
        source_estimate = load_document(session, 'estimate', data['source_estimate_id'])
    elif document_type == 'estimate' and data.get('source_invoice_id'):
        document = load_document(session, 'invoice', data['source_invoice_id'])

    for loaded in (document, source_estimate):
        if loaded is not None and loaded.job_id != job_id:
            raise NotFoundError(f"{loaded.document_type.capitalize()} {loaded.id} not found for this job.")

    client_info = _client_info(job)
    delivery = current_app.extensions['delivery_service']
    default_tax_rate = current_app.config.get('DEFAULT_TAX_RATE')

    def factory():
        builder = BUILDERS[document_type](
            job_id, DocumentStore(get_session), Notifier(), CancellationToken(),
            default_tax_rate=default_tax_rate
        )
        return SteppedDocumentWorkflow(builder, delivery=delivery, client_info=client_info)

    workflow = _registry().open(job_id, document_type, factory)
    workflow.open(document=document, source_estimate=source_estimate)
    current_app.logger.info(f"[BUILDER] Opened {document_type} builder for job {job_id}")
    return _respond(workflow, 201)


@builder_bp.route('', methods=['GET'])
def get_builder(job_id, document_type):
    return _respond(_workflow(job_id, document_type))


@builder_bp.route('', methods=['DELETE'])
def close_builder(job_id, document_type):
    workflow = _workflow(job_id, document_type)
    workflow.close()
    return _respond(workflow)


@builder_bp.route('/items', methods=['POST'])
def add_item(job_id, document_type):
    """Add a catalog product ({"product_id": ...}) or a blank custom line ({"custom": true})."""
    workflow = _workflow(job_id, document_type)
    data = _payload()
    if data.get('product_id'):
        product = get_product(get_session(), data['product_id'])
        item = workflow.builder.add_product(product)
    elif data.get('custom'):
        item = workflow.builder.add_custom_line()
    else:
        raise ValidationError('Provide a product_id or set custom to true.')
    return _respond(workflow, 201, item=item.to_dict())


@builder_bp.route('/items/<item_id>', methods=['PATCH'])
def update_item(job_id, document_type, item_id):
    workflow = _workflow(job_id, document_type)
    workflow.builder.update_line_item(item_id, _payload())
    return _respond(workflow)


@builder_bp.route('/items/<item_id>', methods=['DELETE'])
def remove_item(job_id, document_type, item_id):
    workflow = _workflow(job_id, document_type)
    workflow.builder.remove_line_item(item_id)
    return _respond(workflow)


@builder_bp.route('/details', methods=['PATCH'])
def update_details(job_id, document_type):
    """Set tax_rate and/or notes."""
    workflow = _workflow(job_id, document_type)
    data = _payload()
    if 'tax_rate' in data:
        workflow.builder.set_tax_rate(data['tax_rate'])
    if 'notes' in data:
        workflow.builder.set_notes(data['notes'])
    return _respond(workflow)


@builder_bp.route('/advance', methods=['POST'])
def advance(job_id, document_type):
    workflow = _workflow(job_id, document_type)
    advanced = workflow.advance()
    return _respond(workflow, 200 if advanced else 409, advanced=advanced)


@builder_bp.route('/back', methods=['POST'])
def back(job_id, document_type):
    workflow = _workflow(job_id, document_type)
    moved = workflow.back()
    return _respond(workflow, 200 if moved else 409, moved=moved)


@builder_bp.route('/upsells', methods=['GET'])
def upsell_options(job_id, document_type):
    _workflow(job_id, document_type)
    products = list_upsell_products(get_session())
    return jsonify({
        'status': 'success',
        'products': [
            {
                'id': p.id,
                'name': p.name,
                'description': p.description,
                'price': float(p.price),
                'category': p.category,
            }
            for p in products
        ],
    })


@builder_bp.route('/upsells', methods=['POST'])
def apply_upsells(job_id, document_type):
    """Body: {"product_ids": [...], "notes": "..."}"""
    workflow = _workflow(job_id, document_type)
    data = _payload()
    products = get_products(get_session(), data.get('product_ids') or [])
    added = workflow.apply_upsells(products, data.get('notes'))
    return _respond(workflow, added=added)


@builder_bp.route('/send', methods=['PUT'])
def configure_send(job_id, document_type):
    """Body: {"channel": "email"|"sms", "recipient": "...", "message": "..."}"""
    workflow = _workflow(job_id, document_type)
    data = _payload()
    workflow.send_step.configure(
        channel=data.get('channel'),
        recipient=data.get('recipient'),
        message=data.get('message'),
    )
    return _respond(workflow)


@builder_bp.route('/send', methods=['POST'])
def send(job_id, document_type):
    workflow = _workflow(job_id, document_type)
    if workflow.step != 'send':
        raise ValidationError('Finish the previous steps before sending.')

    data = _payload()
    if data:
        workflow.send_step.configure(
            channel=data.get('channel'),
            recipient=data.get('recipient'),
            message=data.get('message'),
        )

    if workflow.send_step.send():
        return _respond(workflow, sent=True)

    result = workflow.send_step.result
    status_code = 502 if result is not None and not result.success else 400
    return _respond(workflow, status_code, sent=False, error=workflow.send_step.error)


@builder_bp.route('/save', methods=['POST'])
def save_for_later(job_id, document_type):
    workflow = _workflow(job_id, document_type)
    saved = workflow.save_for_later()
    if saved is None:
        error = workflow.builder.last_error
        status_code = error.status_code if error else 409
        return _respond(workflow, status_code, saved=False)
    return _respond(workflow, saved=True, document=saved.to_dict())
