"""
Three-step document dialog: items -> upsell -> send.

Transitions move one step at a time. Leaving the items step saves the
document; the upsell step is optional; the send step completes the workflow
when delivery succeeds.
"""
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from fieldservice.workflow.send_step import SendDocumentStep

logger = logging.getLogger(__name__)

STEPS = ('items', 'upsell', 'send')


class SteppedDocumentWorkflow:

    def __init__(self, builder, delivery=None, client_info: Optional[Dict[str, Any]] = None,
                 send_step_factory: Optional[Callable[['SteppedDocumentWorkflow'], SendDocumentStep]] = None):
        self.builder = builder
        self.client_info = client_info or {}
        self._delivery = delivery
        self._send_step_factory = send_step_factory or (lambda workflow: SendDocumentStep(workflow, delivery))
        self._lock = threading.RLock()
        self._on_close: List[Callable[[], None]] = []
        self.step = STEPS[0]
        self.completed = False
        self.closed = False
        self.send_step: Optional[SendDocumentStep] = None

    @property
    def notifier(self):
        return self.builder.notifier

    @property
    def document_type(self) -> str:
        return self.builder.document_type

    def on_close(self, callback: Callable[[], None]) -> None:
        self._on_close.append(callback)

    def open(self, document=None, source_estimate=None) -> 'SteppedDocumentWorkflow':
        """
        Start (or restart) the dialog at the items step.

        `document` is an estimate or invoice to edit or convert; on an
        invoice workflow `source_estimate` is the estimate to convert.
        """
        with self._lock:
            self.step = STEPS[0]
            self.completed = False
            if document is not None:
                self._initialize(document)
            elif source_estimate is not None:
                self.builder.initialize_from_estimate(source_estimate)
            else:
                self.builder.reset_form()
            self.send_step = self._send_step_factory(self)
        return self

    def _initialize(self, document) -> None:
        if document.document_type == 'estimate':
            self.builder.initialize_from_estimate(document)
        else:
            self.builder.initialize_from_invoice(document)

    def _ensure_open(self) -> bool:
        if self.closed:
            self.notifier.error('This dialog has been closed.')
            return False
        return True

    def advance(self) -> bool:
        """
        Move to the next step. Returns False when the move is not allowed
        (a notification says why).
        """
        with self._lock:
            if not self._ensure_open():
                return False

            if self.step == 'items':
                if not self.builder.items:
                    self.notifier.error('Add at least one line item before continuing.')
                    return False
                if self.builder.save() is None:
                    return False
                self.step = 'upsell'
                return True

            if self.step == 'upsell':
                self.step = 'send'
                return True

            # send is the last step; it finishes through send_step.send()
            return False

    def back(self) -> bool:
        """Move to the previous step without saving. Send step input is kept."""
        with self._lock:
            if not self._ensure_open():
                return False
            index = STEPS.index(self.step)
            if index == 0:
                return False
            self.step = STEPS[index - 1]
            return True

    def go_to(self, step: str) -> bool:
        """Single-step navigation by name (next or previous only)."""
        if step not in STEPS:
            return False
        current = STEPS.index(self.step)
        target = STEPS.index(step)
        if target == current + 1:
            return self.advance()
        if target == current - 1:
            return self.back()
        return target == current

    def apply_upsells(self, products: Iterable, upsell_notes: Optional[str] = None) -> int:
        """Append the chosen upsell products and notes. Returns how many lines were added."""
        with self._lock:
            if not self._ensure_open():
                return 0
            added = 0
            for product in products:
                self.builder.add_upsell(product)
                added += 1
            self.builder.append_notes(upsell_notes)
        if added:
            self.notifier.success(f"Added {added} upsell item{'s' if added != 1 else ''}")
        return added

    def is_step_complete(self, step: str) -> bool:
        if step == 'items':
            return len(self.builder.items) > 0
        if step == 'upsell':
            return True
        if step == 'send':
            return self.completed
        return False

    def save_for_later(self):
        """Save as a draft without moving between steps."""
        with self._lock:
            if not self._ensure_open():
                return None
            return self.builder.save()

    def complete(self) -> None:
        """Called by the send step once the document has been delivered."""
        with self._lock:
            self.completed = True
        logger.info(f"[BUILDER] {self.builder.label} {self.builder.number} workflow completed")
        self.close()

    def close(self) -> None:
        with self._lock:
            if self.closed:
                return
            self.closed = True
            self.builder.close()
            callbacks, self._on_close = self._on_close, []
        for callback in callbacks:
            callback()

    def to_dict(self, include_cost: bool = True) -> Dict[str, Any]:
        return {
            'step': self.step,
            'steps': [
                {'name': name, 'complete': self.is_step_complete(name), 'current': name == self.step}
                for name in STEPS
            ],
            'completed': self.completed,
            'closed': self.closed,
            'document': self.builder.snapshot(include_cost=include_cost),
            'send': self.send_step.to_dict() if self.send_step else None,
            'client': self.client_info,
        }
