"""
Document builder: in-memory editing state for one estimate or invoice dialog.

A builder owns the line items, tax rate and notes being edited, and the
identity (id, number, version) of the document once it has been saved.
Mutations are serialised by a lock. Saving goes through a store object
(`DocumentStore` in production, a fake in tests).
"""
import logging
import threading
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from fieldservice.builder.cancellation import CancellationToken
from fieldservice.builder.notifier import Notifier
from fieldservice.blueprints.metrics import record_document_saved
from fieldservice.exceptions import ConcurrentEditError, FieldServiceError, PersistenceError, ValidationError
from fieldservice.pricing import LineItem, DocumentTotals, calculate_totals
from fieldservice.services.document_service import SavedDocument
from fieldservice.utils.formatters import format_money
from fieldservice.utils.number_format import ZERO, coerce_tax_rate

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = Decimal('13')
UPSELL_CATEGORIES = ('warranty',)


class DocumentBuilder:
    """Base builder; use EstimateBuilder or InvoiceBuilder."""

    document_type: str = None

    def __init__(self, job_id: str, store, notifier: Optional[Notifier] = None,
                 token: Optional[CancellationToken] = None, default_tax_rate=None):
        if self.document_type is None:
            raise TypeError("DocumentBuilder is abstract; use EstimateBuilder or InvoiceBuilder")
        self.job_id = job_id
        self._store = store
        self.notifier = notifier or Notifier()
        self.token = token or CancellationToken()
        self.default_tax_rate = (
            coerce_tax_rate(default_tax_rate) if default_tax_rate is not None else DEFAULT_TAX_RATE
        )
        self._lock = threading.RLock()
        self.is_submitting = False
        self.last_error: Optional[FieldServiceError] = None
        self.last_saved: Optional[SavedDocument] = None
        self._reset_state()

    # State

    def _reset_state(self) -> None:
        self._items: List[LineItem] = []
        self.tax_rate: Decimal = self.default_tax_rate
        self.notes: str = ''
        self.document_id: Optional[str] = None
        self.number: Optional[str] = None
        self.version: Optional[int] = None
        self.status: str = 'draft'
        self.source_type: Optional[str] = None
        self.source_id: Optional[str] = None
        self.last_error = None
        self.last_saved = None

    @property
    def label(self) -> str:
        return self.document_type.capitalize()

    @property
    def items(self) -> Tuple[LineItem, ...]:
        with self._lock:
            return tuple(self._items)

    @property
    def is_saved(self) -> bool:
        return self.document_id is not None

    @property
    def closed(self) -> bool:
        return self.token.cancelled

    def totals(self) -> DocumentTotals:
        with self._lock:
            return calculate_totals(self._items, self.tax_rate)

    def get_item(self, item_id: str) -> Optional[LineItem]:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
        return None

    # Mutations

    def add_product(self, product) -> LineItem:
        """Append a catalog product as a new line (quantity 1)."""
        item = LineItem.from_product(product)
        with self._lock:
            self._items.append(item)
        self.notifier.success(f"Added {product.name}")
        return item

    def add_upsell(self, product) -> LineItem:
        """Append an upsell product; warranties are never taxed."""
        item = LineItem.from_product(product)
        if getattr(product, 'category', None) in UPSELL_CATEGORIES:
            item = item.updated({'taxable': False})
        with self._lock:
            self._items.append(item)
        return item

    def add_custom_line(self) -> LineItem:
        """Append an empty, zero-priced line for free-form entry."""
        item = LineItem()
        with self._lock:
            self._items.append(item)
        return item

    def remove_line_item(self, item_id: str) -> None:
        with self._lock:
            self._items = [item for item in self._items if item.id != item_id]

    def update_line_item(self, item_id: str, patch: Dict[str, Any]) -> Optional[LineItem]:
        """Merge a patch into one line. Unknown ids are ignored."""
        with self._lock:
            for index, item in enumerate(self._items):
                if item.id == item_id:
                    self._items[index] = item.updated(patch)
                    return self._items[index]
        return None

    def set_tax_rate(self, tax_rate) -> Decimal:
        with self._lock:
            self.tax_rate = coerce_tax_rate(tax_rate)
            return self.tax_rate

    def set_notes(self, notes: Optional[str]) -> None:
        with self._lock:
            self.notes = notes or ''

    def append_notes(self, extra: Optional[str]) -> None:
        """Append a paragraph to the notes, separated by a blank line."""
        extra = (extra or '').strip()
        if not extra:
            return
        with self._lock:
            self.notes = f"{self.notes}\n\n{extra}" if self.notes.strip() else extra

    def reset_form(self) -> None:
        with self._lock:
            self._reset_state()

    # Loading

    def initialize_from_estimate(self, estimate) -> None:
        self._initialize_from('estimate', estimate)

    def initialize_from_invoice(self, invoice) -> None:
        self._initialize_from('invoice', invoice)

    def _initialize_from(self, source_type: str, source) -> None:
        """
        Replace the state with a copy of a saved document.

        Same document type: editing, the builder takes over the document's id,
        number and version and keeps item ids. Other type: converting, a new
        document is built from fresh copies of the items and the source is
        remembered so the first save can mark it converted.
        """
        if not isinstance(source, SavedDocument):
            source = self._store.load(source_type, source.id)

        editing = source_type == self.document_type
        items = list(source.items) if editing else [item.with_new_id() for item in source.items]

        with self._lock:
            self._reset_state()
            self.job_id = source.job_id
            self._items = items
            self.tax_rate = Decimal(source.tax_rate)
            self.notes = source.notes or ''
            if editing:
                self.document_id = source.id
                self.number = source.number
                self.version = source.version
                self.status = source.status
                self.last_saved = source
            else:
                self.source_type = source_type
                self.source_id = source.id
        logger.info(
            f"[BUILDER] {self.label} builder loaded from {source_type} {source.number} "
            f"({'edit' if editing else 'convert'})"
        )

    # Persistence

    def save(self) -> Optional[SavedDocument]:
        """
        Persist the current state.

        Inserts on first save, updates (with a version check) afterwards.
        Returns the saved snapshot, or None when the save was refused or
        failed; the reason is in `last_error` and the notifier. In-memory
        edits are never lost on failure.
        """
        with self._lock:
            if self.token.cancelled:
                return None
            if self.is_submitting:
                self.notifier.warning('A save is already in progress.')
                return None
            if not self._items:
                self.last_error = ValidationError('Add at least one line item before saving.')
                self.notifier.error(self.last_error.message)
                return None
            self.is_submitting = True
            self.last_error = None
            items = list(self._items)
            tax_rate = self.tax_rate
            notes = self.notes
            document_id = self.document_id
            version = self.version
            source_type, source_id = self.source_type, self.source_id

        saved = None
        error = None
        try:
            if document_id is None:
                saved = self._store.insert(
                    self.document_type, self.job_id, items, tax_rate, notes,
                    source_type=source_type, source_id=source_id
                )
            else:
                saved = self._store.update(self.document_type, document_id, version, items, tax_rate, notes)
        except FieldServiceError as e:
            error = e
        except Exception as e:
            logger.exception(f"[BUILDER] Unexpected error saving {self.document_type} {document_id or '(new)'}: {e}")
            error = PersistenceError('Unexpected error while saving. Please try again.')
        finally:
            with self._lock:
                self.is_submitting = False

        with self._lock:
            # The dialog closed while the save was in flight: drop the result
            if self.token.cancelled:
                logger.info(f"[BUILDER] {self.label} save finished after close; result discarded")
                return None

            if error is not None:
                self.last_error = error
                if isinstance(error, ConcurrentEditError):
                    self.notifier.error(
                        f"{self.label} {self.number} was changed by someone else. "
                        f"Reload it before saving again."
                    )
                else:
                    self.notifier.error(f"Could not save {self.document_type}: {error.message}")
                logger.warning(f"[BUILDER] Save of {self.document_type} {document_id or '(new)'} failed: {error.message}")
                return None

            self.document_id = saved.id
            self.number = saved.number
            self.version = saved.version
            self.status = saved.status
            self.source_type = None
            self.source_id = None
            self.last_saved = saved

        operation = 'insert' if document_id is None else 'update'
        if source_id and document_id is None:
            operation = 'convert'
        record_document_saved(self.document_type, operation)

        if not saved.lines_persisted:
            self.notifier.warning(
                f"{self.label} {saved.number} was created but its line items could not be saved. "
                f"Save again to retry."
            )
        else:
            self.notifier.success(f"{self.label} {saved.number} saved ({format_money(saved.total)})")
        return saved

    def close(self) -> None:
        self.token.cancel()

    # Output

    def snapshot(self, include_cost: bool = True) -> Dict[str, Any]:
        with self._lock:
            totals = calculate_totals(self._items, self.tax_rate)
            return {
                'document_type': self.document_type,
                'document_id': self.document_id,
                'number': self.number,
                'job_id': self.job_id,
                'status': self.status,
                'version': self.version,
                'tax_rate': float(self.tax_rate),
                'notes': self.notes,
                'items': [item.to_dict(include_cost=include_cost) for item in self._items],
                'totals': totals.to_dict(include_margin=include_cost),
                'source': {'type': self.source_type, 'id': self.source_id} if self.source_id else None,
                'is_submitting': self.is_submitting,
                'last_error': self.last_error.message if self.last_error else None,
            }

    to_dict = snapshot


class EstimateBuilder(DocumentBuilder):
    document_type = 'estimate'


class InvoiceBuilder(DocumentBuilder):
    document_type = 'invoice'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.amount_paid: Decimal = ZERO
        self.balance: Decimal = ZERO

    def _initialize_from(self, source_type, source):
        super()._initialize_from(source_type, source)
        saved = self.last_saved
        with self._lock:
            self.amount_paid = saved.amount_paid if saved else ZERO
            self.balance = saved.balance if saved else ZERO

    def reset_form(self) -> None:
        super().reset_form()
        with self._lock:
            self.amount_paid = ZERO
            self.balance = ZERO

    def save(self) -> Optional[SavedDocument]:
        saved = super().save()
        if saved is not None:
            with self._lock:
                self.amount_paid = saved.amount_paid
                self.balance = saved.balance
        return saved

    def record_payment(self, amount, method: str = 'cash', reference: Optional[str] = None,
                       notes: Optional[str] = None) -> Optional[SavedDocument]:
        """Record a payment against the saved invoice."""
        if not self.is_saved:
            self.last_error = ValidationError('Save the invoice before recording a payment.')
            self.notifier.error(self.last_error.message)
            return None
        try:
            saved = self._store.record_payment(self.document_id, amount, method, reference, notes)
        except FieldServiceError as e:
            self.last_error = e
            self.notifier.error(f"Could not record payment: {e.message}")
            return None

        with self._lock:
            if self.token.cancelled:
                return None
            self.version = saved.version
            self.status = saved.status
            self.amount_paid = saved.amount_paid
            self.balance = saved.balance
            self.last_saved = saved
            self.last_error = None
        if saved.status == 'paid':
            self.notifier.success(f"Invoice {saved.number} is paid in full")
        else:
            self.notifier.success(f"Payment recorded. Balance due: {format_money(saved.balance)}")
        return saved

    def snapshot(self, include_cost: bool = True) -> Dict[str, Any]:
        data = super().snapshot(include_cost)
        data['amount_paid'] = float(self.amount_paid)
        data['balance'] = float(self.balance)
        return data

    to_dict = snapshot


BUILDERS = {
    'estimate': EstimateBuilder,
    'invoice': InvoiceBuilder,
}
