"""
Document service: persistence of estimates and invoices.

Module-level functions take an explicit session, following the usual service
idiom (commit on success, rollback and re-raise on failure). `DocumentStore`
binds them to a session factory for the builder.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldservice.database import get_session
from fieldservice.exceptions import (
    ConcurrentEditError, NotFoundError, PersistenceError, ValidationError, WorkflowError,
)
from fieldservice.models import DOCUMENT_MODELS, DocumentLine, Job, Payment
from fieldservice.pricing import LineItem, calculate_totals
from fieldservice.services.cache_service import PORTAL_MODULE, invalidate_client_cache
from fieldservice.utils.number_format import ZERO, coerce_amount, coerce_tax_rate, round_money

logger = logging.getLogger(__name__)

NUMBER_PREFIXES = {
    'estimate': 'EST',
    'invoice': 'INV',
}


@dataclass(frozen=True)
class SavedDocument:
    """
    Immutable snapshot of a persisted estimate or invoice and its line items.

    `lines_persisted` is False when the header row committed but writing the
    line items failed; the document exists but needs another save.
    """
    id: str
    document_type: str
    number: str
    job_id: str
    status: str
    tax_rate: Decimal
    notes: str
    items: Tuple[LineItem, ...]
    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal
    version: int
    lines_persisted: bool = True
    estimate_id: Optional[str] = None
    amount_paid: Decimal = ZERO
    balance: Decimal = ZERO
    valid_until: Optional[date] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, document, items: Iterable[LineItem], lines_persisted: bool = True) -> 'SavedDocument':
        is_invoice = document.document_type == 'invoice'
        return cls(
            id=document.id,
            document_type=document.document_type,
            number=document.number,
            job_id=document.job_id,
            status=document.status,
            tax_rate=Decimal(document.tax_rate or 0),
            notes=document.notes or '',
            items=tuple(items),
            subtotal=Decimal(document.subtotal or 0),
            tax_amount=Decimal(document.tax_amount or 0),
            total=Decimal(document.total or 0),
            version=document.version,
            lines_persisted=lines_persisted,
            estimate_id=document.estimate_id if is_invoice else None,
            amount_paid=Decimal(document.amount_paid or 0) if is_invoice else ZERO,
            balance=Decimal(document.balance or 0) if is_invoice else ZERO,
            valid_until=None if is_invoice else document.valid_until,
            issue_date=document.issue_date if is_invoice else None,
            due_date=document.due_date if is_invoice else None,
            created_at=document.created_at,
        )

    def to_dict(self, include_cost: bool = True) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'document_type': self.document_type,
            'number': self.number,
            'job_id': self.job_id,
            'status': self.status,
            'tax_rate': float(self.tax_rate),
            'notes': self.notes,
            'items': [item.to_dict(include_cost=include_cost) for item in self.items],
            'subtotal': float(self.subtotal),
            'tax_amount': float(self.tax_amount),
            'total': float(self.total),
            'version': self.version,
            'lines_persisted': self.lines_persisted,
        }
        if self.document_type == 'invoice':
            data.update({
                'estimate_id': self.estimate_id,
                'amount_paid': float(self.amount_paid),
                'balance': float(self.balance),
                'issue_date': self.issue_date.isoformat() if self.issue_date else None,
                'due_date': self.due_date.isoformat() if self.due_date else None,
            })
        else:
            data['valid_until'] = self.valid_until.isoformat() if self.valid_until else None
        return data


def _config_int(key: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, default))
    return default


def get_document_model(document_type: str):
    model = DOCUMENT_MODELS.get(document_type)
    if model is None:
        raise ValidationError(f"Unknown document type '{document_type}'.")
    return model


def generate_document_number(session: Session, document_type: str) -> str:
    """Generate a document number such as EST-20261018-143005-0003."""
    model = get_document_model(document_type)
    now = datetime.now()
    timestamp = now.strftime('%Y%m%d-%H%M%S')
    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    count = session.query(model).filter(model.created_at >= today_start).count()
    return f"{NUMBER_PREFIXES[document_type]}-{timestamp}-{str(count + 1).zfill(4)}"


def get_document(session: Session, document_type: str, document_id: str):
    model = get_document_model(document_type)
    document = session.get(model, document_id)
    if not document:
        raise NotFoundError(f"{document_type.capitalize()} {document_id} not found.")
    return document


def invalidate_client_dashboard(session: Session, job_id: str) -> None:
    """Drop the cached portal dashboard of the client who owns the job."""
    job = session.get(Job, job_id)
    if job:
        invalidate_client_cache(job.client_id, PORTAL_MODULE)


def _line_to_item(line: DocumentLine) -> LineItem:
    return LineItem(
        id=line.item_id,
        description=line.description or '',
        quantity=Decimal(line.quantity),
        unit_price=Decimal(line.unit_price),
        our_price=Decimal(line.our_price),
        discount=Decimal(line.discount),
        taxable=bool(line.taxable),
        product_id=line.product_id,
    )


def load_line_items(session: Session, document_type: str, document_id: str) -> List[LineItem]:
    lines = (
        session.query(DocumentLine)
        .filter(DocumentLine.parent_type == document_type, DocumentLine.parent_id == document_id)
        .order_by(DocumentLine.position)
        .all()
    )
    return [_line_to_item(line) for line in lines]


def load_document(session: Session, document_type: str, document_id: str) -> SavedDocument:
    document = get_document(session, document_type, document_id)
    return SavedDocument.from_model(document, load_line_items(session, document_type, document_id))


def list_documents(session: Session, job_id: Optional[str] = None, document_type: Optional[str] = None) -> list:
    """List estimates and/or invoices, newest first."""
    types = [document_type] if document_type else list(DOCUMENT_MODELS)
    results = []
    for doc_type in types:
        model = get_document_model(doc_type)
        query = session.query(model)
        if job_id:
            query = query.filter(model.job_id == job_id)
        results.extend(query.all())
    results.sort(key=lambda d: d.created_at or datetime.min, reverse=True)
    return results


def _write_lines(session: Session, document_type: str, document_id: str, items: Iterable[LineItem]) -> None:
    for position, item in enumerate(items):
        session.add(DocumentLine(
            parent_type=document_type,
            parent_id=document_id,
            position=position,
            item_id=item.id,
            product_id=item.product_id,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            our_price=item.our_price,
            discount=item.discount,
            taxable=item.taxable,
            line_total=round_money(item.total),
        ))


def _replace_lines(session: Session, document_type: str, document_id: str, items: Iterable[LineItem]) -> None:
    session.query(DocumentLine).filter(
        DocumentLine.parent_type == document_type,
        DocumentLine.parent_id == document_id
    ).delete(synchronize_session=False)
    _write_lines(session, document_type, document_id, items)


def _mark_source_converted(session: Session, source_type: str, source_id: str) -> None:
    """Flag the source document as converted. Failures are logged, never raised."""
    try:
        model = get_document_model(source_type)
        session.query(model).filter(model.id == source_id).update(
            {model.status: 'converted', model.version: model.version + 1},
            synchronize_session=False
        )
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[DOCUMENTS] Could not mark {source_type} {source_id} as converted: {e}")


def insert_document(
    session: Session,
    document_type: str,
    job_id: str,
    items: Iterable[LineItem],
    tax_rate,
    notes: Optional[str] = None,
    source_type: Optional[str] = None,
    source_id: Optional[str] = None,
) -> SavedDocument:
    """
    Create a new draft document.

    The header row is committed first so the document gets its id and number;
    line items are written in a second transaction. If that second write fails
    the header stays and the result carries `lines_persisted=False`.
    """
    model = get_document_model(document_type)
    items = list(items)
    if not items:
        raise ValidationError('A document needs at least one line item.')

    if not session.get(Job, job_id):
        raise NotFoundError(f"Job {job_id} not found.")

    rate = coerce_tax_rate(tax_rate)
    totals = calculate_totals(items, rate).rounded()
    today = date.today()

    try:
        values = dict(
            job_id=job_id,
            status='draft',
            tax_rate=rate,
            subtotal=totals.subtotal,
            tax_amount=totals.tax,
            total=totals.total,
            notes=notes or None,
            version=1,
        )
        if document_type == 'invoice':
            values.update(
                invoice_number=generate_document_number(session, 'invoice'),
                estimate_id=source_id if source_type == 'estimate' else None,
                amount_paid=ZERO,
                balance=totals.total,
                issue_date=today,
                due_date=today + timedelta(days=_config_int('INVOICE_DUE_DAYS', 30)),
            )
        else:
            values.update(
                estimate_number=generate_document_number(session, 'estimate'),
                valid_until=today + timedelta(days=_config_int('ESTIMATE_VALID_DAYS', 30)),
            )
        document = model(**values)
        session.add(document)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[DOCUMENTS] Failed to create {document_type} for job {job_id}: {e}")
        raise PersistenceError(f"Could not create {document_type}.")

    document_id = document.id
    lines_persisted = True
    try:
        _write_lines(session, document_type, document_id, items)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        lines_persisted = False
        logger.error(f"[DOCUMENTS] {document_type} {document_id} saved without line items: {e}")

    if source_type and source_id:
        _mark_source_converted(session, source_type, source_id)

    invalidate_client_dashboard(session, job_id)
    document = session.get(model, document_id)
    logger.info(f"[DOCUMENTS] Created {document_type} {document.number} ({len(items)} items, total {totals.total})")
    return SavedDocument.from_model(document, items, lines_persisted=lines_persisted)


def update_document(
    session: Session,
    document_type: str,
    document_id: str,
    expected_version: int,
    items: Iterable[LineItem],
    tax_rate,
    notes: Optional[str] = None,
) -> SavedDocument:
    """
    Overwrite an existing document's items, tax rate and notes.

    The write only applies when the stored version still equals
    `expected_version`; otherwise ConcurrentEditError is raised and nothing
    changes.
    """
    model = get_document_model(document_type)
    items = list(items)
    if not items:
        raise ValidationError('A document needs at least one line item.')

    rate = coerce_tax_rate(tax_rate)
    totals = calculate_totals(items, rate).rounded()

    values = {
        model.tax_rate: rate,
        model.subtotal: totals.subtotal,
        model.tax_amount: totals.tax,
        model.total: totals.total,
        model.notes: notes or None,
        model.version: model.version + 1,
    }
    if document_type == 'invoice':
        values[model.balance] = case(
            (model.amount_paid >= totals.total, ZERO),
            else_=totals.total - model.amount_paid
        )

    try:
        updated = session.query(model).filter(
            model.id == document_id,
            model.version == expected_version
        ).update(values, synchronize_session=False)

        if updated == 0:
            current_version = session.query(model.version).filter(model.id == document_id).scalar()
            session.rollback()
            if current_version is None:
                raise NotFoundError(f"{document_type.capitalize()} {document_id} not found.")
            raise ConcurrentEditError(document_type, document_id, expected_version, current_version)

        _replace_lines(session, document_type, document_id, items)
        session.commit()
    except (NotFoundError, ConcurrentEditError):
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[DOCUMENTS] Failed to update {document_type} {document_id}: {e}")
        raise PersistenceError(f"Could not update {document_type}.")

    document = get_document(session, document_type, document_id)
    session.refresh(document)
    invalidate_client_dashboard(session, document.job_id)
    logger.info(f"[DOCUMENTS] Updated {document_type} {document.number} to version {document.version}")
    return SavedDocument.from_model(document, items)


def _convert(session: Session, source_type: str, source_id: str, target_type: str) -> SavedDocument:
    source = get_document(session, source_type, source_id)
    if source.status in ('converted', 'cancelled'):
        raise WorkflowError(f"{source_type.capitalize()} {source.number} is {source.status} and cannot be converted.")
    if source_type == 'estimate' and source.status == 'rejected':
        raise WorkflowError(f"Estimate {source.number} was rejected and cannot be converted.")

    # Copies, never references: the new document gets fresh item ids
    items = [item.with_new_id() for item in load_line_items(session, source_type, source_id)]
    if not items:
        raise ValidationError(f"{source_type.capitalize()} {source.number} has no line items to convert.")

    return insert_document(
        session, target_type, source.job_id, items, source.tax_rate, source.notes,
        source_type=source_type, source_id=source_id
    )


def convert_estimate_to_invoice(session: Session, estimate_id: str) -> SavedDocument:
    return _convert(session, 'estimate', estimate_id, 'invoice')


def convert_invoice_to_estimate(session: Session, invoice_id: str) -> SavedDocument:
    return _convert(session, 'invoice', invoice_id, 'estimate')


def mark_document_sent(session: Session, document) -> None:
    """Move a draft to 'sent'. The caller commits."""
    if document.status == 'draft':
        document.status = 'sent'
        document.version = document.version + 1


def record_payment(
    session: Session,
    invoice_id: str,
    amount,
    method: str = 'cash',
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> SavedDocument:
    """
    Record a payment: amount_paid grows, balance = max(0, total - amount_paid),
    status becomes 'paid' when nothing is owed, 'partial' otherwise.
    """
    amount = round_money(coerce_amount(amount))
    if amount <= 0:
        raise ValidationError('Payment amount must be greater than zero.')

    try:
        invoice = get_document(session, 'invoice', invoice_id)
        if invoice.status in ('cancelled', 'converted'):
            raise WorkflowError(f"Invoice {invoice.number} is {invoice.status}; payments are not accepted.")
        if invoice.status == 'paid':
            raise WorkflowError(f"Invoice {invoice.number} is already paid.")

        session.add(Payment(
            invoice_id=invoice.id,
            amount=amount,
            method=method or 'cash',
            reference=reference,
            notes=notes,
        ))

        total = Decimal(invoice.total or 0)
        amount_paid = Decimal(invoice.amount_paid or 0) + amount
        balance = max(ZERO, total - amount_paid)

        invoice.amount_paid = amount_paid
        invoice.balance = balance
        invoice.status = 'paid' if balance == 0 else 'partial'
        invoice.version = invoice.version + 1

        session.commit()
    except (ValidationError, NotFoundError, WorkflowError):
        session.rollback()
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[DOCUMENTS] Failed to record payment on invoice {invoice_id}: {e}")
        raise PersistenceError('Could not record payment.')

    logger.info(f"[DOCUMENTS] Payment of {amount} recorded on invoice {invoice_id}")
    invalidate_client_dashboard(session, invoice.job_id)
    return load_document(session, 'invoice', invoice_id)


def recalculate_totals(session: Session) -> int:
    """Recompute every stored totals snapshot from its line items. Returns the number changed."""
    changed = 0
    try:
        for document_type in DOCUMENT_MODELS:
            for document in session.query(get_document_model(document_type)).all():
                items = load_line_items(session, document_type, document.id)
                totals = calculate_totals(items, document.tax_rate).rounded()
                if (Decimal(document.subtotal), Decimal(document.tax_amount), Decimal(document.total)) == \
                        (totals.subtotal, totals.tax, totals.total):
                    continue
                document.subtotal = totals.subtotal
                document.tax_amount = totals.tax
                document.total = totals.total
                if document_type == 'invoice':
                    document.balance = max(ZERO, totals.total - Decimal(document.amount_paid or 0))
                changed += 1
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        raise
    return changed


class DocumentStore:
    """
    Persistence collaborator used by the document builder.

    Each call resolves a session from `session_factory`, so a store can
    outlive the request that created it.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    @property
    def session(self) -> Session:
        return self._session_factory()

    def _call(self, operation, *args, **kwargs):
        """Run a service function; database errors it does not handle become PersistenceError."""
        session = self.session
        try:
            return operation(session, *args, **kwargs)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"[DOCUMENTS] {operation.__name__} failed: {e}")
            raise PersistenceError('Could not reach the database. Please try again.')

    def insert(self, document_type, job_id, items, tax_rate, notes=None, source_type=None, source_id=None):
        return self._call(insert_document, document_type, job_id, items, tax_rate, notes,
                          source_type=source_type, source_id=source_id)

    def update(self, document_type, document_id, expected_version, items, tax_rate, notes=None):
        return self._call(update_document, document_type, document_id, expected_version,
                          items, tax_rate, notes)

    def load(self, document_type, document_id):
        return self._call(load_document, document_type, document_id)

    def record_payment(self, invoice_id, amount, method='cash', reference=None, notes=None):
        return self._call(record_payment, invoice_id, amount, method, reference, notes)
