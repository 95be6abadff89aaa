"""
Unit tests for the document builder, against an in-memory store.
"""

import threading
from decimal import Decimal

import pytest

from fieldservice.builder import EstimateBuilder, InvoiceBuilder, Notifier, CancellationToken
from fieldservice.exceptions import ConcurrentEditError, PersistenceError
from fieldservice.services.document_service import SavedDocument

from tests.fakes import FakeStore, make_product as _product


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def builder(store):
    return EstimateBuilder('job-1', store, Notifier(), CancellationToken(), default_tax_rate=13)


def _levels(notifier):
    return [n['level'] for n in notifier.drain()]


class TestMutations:
    """Tests for editing line items, tax and notes."""

    def test_add_product_notifies(self, builder):
        """Test adding a catalog product as a line."""
        item = builder.add_product(_product())

        assert builder.items == (item,)
        assert item.quantity == Decimal('1')
        assert builder.notifier.drain() == [{'level': 'success', 'message': 'Added Furnace Tune-Up'}]

    def test_update_unknown_id_is_noop(self, builder):
        """Test that updating an unknown line id changes nothing."""
        builder.add_product(_product())
        before = builder.items

        assert builder.update_line_item('missing', {'quantity': 5}) is None
        assert builder.items == before

    def test_remove_is_idempotent(self, builder):
        """Test that removing the same line twice is harmless."""
        first = builder.add_product(_product('A'))
        builder.add_product(_product('B'))

        builder.remove_line_item(first.id)
        once = builder.items
        builder.remove_line_item(first.id)

        assert builder.items == once
        assert len(once) == 1

    def test_subtotal_tracks_mutations(self, builder):
        """Test that the subtotal follows every add, update and remove."""
        a = builder.add_product(_product('A', price='100'))
        b = builder.add_custom_line()
        builder.update_line_item(b.id, {'description': 'Labour', 'quantity': 2, 'unit_price': 65, 'discount': 10})
        builder.update_line_item(a.id, {'discount': 50})
        builder.remove_line_item('nothing')

        expected = sum((i.quantity * i.unit_price * (1 - i.discount / 100) for i in builder.items), Decimal('0'))
        assert builder.totals().subtotal == expected

    def test_custom_line_is_blank(self, builder):
        """Test that a custom line starts empty and zero-priced."""
        item = builder.add_custom_line()
        assert item.description == ''
        assert item.total == Decimal('0')

    def test_upsell_warranty_is_untaxed(self, builder):
        """Test that a warranty upsell adds its price and no tax."""
        builder.add_product(_product(price='200'))
        builder.update_line_item(builder.items[0].id, {'discount': 10})
        tax_before = builder.totals().tax
        total_before = builder.totals().total

        builder.add_upsell(_product('Warranty', price='89', taxable=True, category='warranty'))

        assert builder.totals().tax == tax_before
        assert builder.totals().total - total_before == Decimal('89')

    def test_append_notes(self, builder):
        """Test appending paragraphs to the notes."""
        builder.append_notes('Includes filter.')
        builder.append_notes('')
        builder.append_notes('Warranty added.')
        assert builder.notes == 'Includes filter.\n\nWarranty added.'

    def test_reset_form(self, builder):
        """Test that resetting restores the blank form."""
        builder.add_product(_product())
        builder.set_notes('x')
        builder.set_tax_rate(5)
        builder.reset_form()

        assert builder.items == ()
        assert builder.notes == ''
        assert builder.tax_rate == Decimal('13')
        assert builder.document_id is None


class TestSave:
    """Tests for saving through the store."""

    def test_empty_document_is_refused(self, builder, store):
        """Test that a document without lines is not saved."""
        assert builder.save() is None
        assert store.calls == []
        assert builder.last_error.status_code == 400
        assert _levels(builder.notifier) == ['error']

    def test_first_save_inserts_then_updates(self, builder, store):
        """Test that the first save inserts and later saves update."""
        builder.add_product(_product())
        first = builder.save()
        second = builder.save()

        assert first.id == second.id
        assert [c[0] for c in store.calls] == ['insert', 'update']
        assert builder.version == 2

    def test_failure_keeps_in_memory_state(self, builder, store):
        """Test that a failed save keeps every in-memory edit."""
        builder.add_product(_product())
        builder.set_notes('Keep me')
        store.fail_with = PersistenceError('Could not create estimate.')

        assert builder.save() is None
        assert len(builder.items) == 1
        assert builder.notes == 'Keep me'
        assert builder.document_id is None
        assert builder.is_submitting is False

        store.fail_with = None
        assert builder.save() is not None

    def test_unexpected_store_error_is_reported(self, builder, store):
        """Test that an unexpected store error becomes a failed save with a notification."""
        builder.add_product(_product())
        builder.notifier.drain()
        store.fail_with = RuntimeError('disk I/O error')

        assert builder.save() is None

        assert isinstance(builder.last_error, PersistenceError)
        assert builder.last_error.status_code == 500
        assert builder.is_submitting is False
        assert builder.notifier.drain() == [{
            'level': 'error',
            'message': 'Could not save estimate: Unexpected error while saving. Please try again.',
        }]
        assert len(builder.items) == 1

    def test_stale_version_reports_conflict(self, builder, store):
        """Test that a stale version is reported as a concurrent edit."""
        builder.add_product(_product())
        saved = builder.save()
        # Someone else saved in between
        store.documents[saved.id] = SavedDocument(**{**saved.__dict__, 'version': saved.version + 1})
        builder.notifier.drain()

        assert builder.save() is None
        assert isinstance(builder.last_error, ConcurrentEditError)
        assert builder.last_error.status_code == 409
        assert 'changed by someone else' in builder.notifier.drain()[0]['message']

    def test_partial_save_is_a_warning(self, builder, store):
        """Test that missing line items after a save raise a warning."""
        builder.add_product(_product())
        store.lines_persisted = False
        builder.notifier.drain()

        saved = builder.save()

        assert saved is not None
        assert saved.lines_persisted is False
        assert _levels(builder.notifier) == ['warning']

    def test_result_dropped_after_close(self, builder, store):
        """Test that a save finishing after close is discarded."""
        builder.add_product(_product())
        store.before_return = builder.close

        assert builder.save() is None
        assert builder.document_id is None

    def test_save_after_close_does_nothing(self, builder, store):
        """Test that a closed builder does not save."""
        builder.add_product(_product())
        builder.close()
        assert builder.save() is None
        assert store.calls == []

    def test_concurrent_save_is_refused(self, builder, store):
        """Test that a second save during an in-flight save is refused."""
        builder.add_product(_product())
        results = []
        entered = threading.Event()
        release = threading.Event()

        def slow():
            entered.set()
            release.wait(2)

        store.before_return = slow
        worker = threading.Thread(target=lambda: results.append(builder.save()))
        worker.start()
        entered.wait(2)
        store.before_return = None

        assert builder.save() is None
        release.set()
        worker.join(2)
        assert results[0] is not None


class TestInitialize:
    """Tests for loading saved documents into a builder."""

    def test_conversion_copies_items(self, builder, store):
        """Test that converting copies items instead of sharing them."""
        builder.add_product(_product())
        estimate = builder.save()

        invoice_builder = InvoiceBuilder('job-1', store, Notifier(), CancellationToken())
        invoice_builder.initialize_from_estimate(estimate)
        invoice_builder.update_line_item(invoice_builder.items[0].id, {'quantity': 4})
        invoice_builder.add_custom_line()

        assert store.documents[estimate.id].items == estimate.items
        assert estimate.items[0].quantity == Decimal('1')
        assert invoice_builder.items[0].id != estimate.items[0].id
        assert invoice_builder.document_id is None
        assert invoice_builder.source_id == estimate.id

    def test_converted_save_passes_source(self, builder, store):
        """Test that the first save of a conversion names its source."""
        builder.add_product(_product())
        estimate = builder.save()

        invoice_builder = InvoiceBuilder('job-1', store, Notifier(), CancellationToken())
        invoice_builder.initialize_from_estimate(estimate)
        invoice_builder.save()

        assert store.calls[-1] == ('insert', 'invoice', 'estimate', estimate.id)
        assert invoice_builder.source_id is None

    def test_save_then_reload_reproduces_state(self, store):
        """Test that saving then reloading gives back the same items, notes and tax rate."""
        builder = InvoiceBuilder('job-1', store, Notifier(), CancellationToken())
        builder.add_product(_product())
        builder.add_upsell(_product('Warranty', price='89', taxable=False, category='warranty'))
        builder.set_tax_rate('8.5')
        builder.set_notes('Side door entry')
        before = (builder.items, builder.notes, builder.tax_rate)

        saved = builder.save()
        reloaded = InvoiceBuilder('job-1', store, Notifier(), CancellationToken())
        reloaded.initialize_from_invoice(saved)

        assert (reloaded.items, reloaded.notes, reloaded.tax_rate) == before
        assert reloaded.document_id == saved.id
        assert reloaded.balance == saved.balance

    def test_record_payment(self, store):
        """Test recording partial and final payments on an invoice."""
        builder = InvoiceBuilder('job-1', store, Notifier(), CancellationToken(), default_tax_rate=0)
        assert builder.record_payment(10) is None

        builder.add_product(_product(price='100'))
        builder.save()
        partial = builder.record_payment(40)
        assert partial.status == 'partial'
        assert builder.balance == Decimal('60.00')

        paid = builder.record_payment(60)
        assert paid.status == 'paid'
        assert builder.balance == Decimal('0')
