"""
Integration tests for the builder endpoints: the full items -> upsell -> send
flow over HTTP.
"""

import pytest

from fieldservice.models import DocumentCommunication, Estimate, Invoice
from fieldservice.pricing import LineItem
from fieldservice.services.document_service import insert_document


@pytest.fixture
def ids(job, customer, service_product, warranty_product):
    return {
        'job': job.id,
        'client': customer.id,
        'service': service_product.id,
        'warranty': warranty_product.id,
    }


def _url(ids, document_type='estimate', suffix=''):
    return f"/jobs/{ids['job']}/builder/{document_type}{suffix}"


class TestBuilderFlow:
    """Tests for the builder API from first item to send."""

    def test_create_and_send_estimate(self, client, session, ids):
        """Test building, upselling and sending an estimate over the API."""
        response = client.post(_url(ids), json={})
        assert response.status_code == 201
        assert response.json['workflow']['step'] == 'items'
        assert response.json['workflow']['client']['email'] == 'dana@example.com'

        response = client.post(_url(ids, suffix='/items'), json={'product_id': ids['service']})
        assert response.status_code == 201
        item_id = response.json['item']['id']
        assert response.json['notifications'] == [{'level': 'success', 'message': 'Added Furnace Tune-Up'}]

        response = client.patch(_url(ids, suffix=f'/items/{item_id}'), json={'quantity': 2, 'discount': 10})
        totals = response.json['workflow']['document']['totals']
        assert totals == {'subtotal': 180.0, 'tax': 23.4, 'total': 203.4, 'margin': 100.0,
                          'margin_percentage': 55.56}

        response = client.post(_url(ids, suffix='/advance'))
        assert response.status_code == 200
        assert response.json['workflow']['step'] == 'upsell'
        estimate_id = response.json['workflow']['document']['document_id']
        assert estimate_id

        response = client.get(_url(ids, suffix='/upsells'))
        assert [p['id'] for p in response.json['products']] == [ids['warranty']]

        response = client.post(_url(ids, suffix='/upsells'),
                               json={'product_ids': [ids['warranty']], 'notes': 'Warranty included.'})
        document = response.json['workflow']['document']
        assert response.json['added'] == 1
        assert document['totals']['tax'] == 23.4
        assert document['totals']['total'] == 292.4
        assert document['notes'] == 'Warranty included.'

        client.post(_url(ids, suffix='/advance'))
        response = client.post(_url(ids, suffix='/send'), json={'channel': 'email'})
        assert response.status_code == 200
        assert response.json['sent'] is True
        assert response.json['workflow']['completed'] is True

        estimate = session.get(Estimate, estimate_id)
        assert estimate.status == 'sent'
        assert float(estimate.total) == 292.4
        assert session.query(DocumentCommunication).filter_by(document_id=estimate_id).count() == 1

        # The completed session is gone
        assert client.get(_url(ids)).status_code == 404

    def test_advance_with_no_items(self, client, ids):
        """Test that an empty document cannot leave the items step."""
        client.post(_url(ids), json={})
        response = client.post(_url(ids, suffix='/advance'))

        assert response.status_code == 409
        assert response.json['workflow']['step'] == 'items'
        assert response.json['notifications'][0]['level'] == 'error'

    def test_send_requires_send_step(self, client, ids):
        """Test that sending before the send step is refused."""
        client.post(_url(ids), json={})
        client.post(_url(ids, suffix='/items'), json={'product_id': ids['service']})
        response = client.post(_url(ids, suffix='/send'), json={'channel': 'email'})
        assert response.status_code == 400

    def test_invalid_recipient_keeps_input(self, client, ids):
        """Test that a rejected recipient is echoed back with the error."""
        client.post(_url(ids), json={})
        client.post(_url(ids, suffix='/items'), json={'product_id': ids['service']})
        client.post(_url(ids, suffix='/advance'))
        client.post(_url(ids, suffix='/advance'))

        response = client.post(_url(ids, suffix='/send'), json={'channel': 'sms', 'recipient': '555-01'})
        assert response.status_code == 400
        send = response.json['workflow']['send']
        assert send['recipient'] == '555-01'
        assert send['error'] == 'Please enter a valid phone number (at least 10 digits).'

    def test_blank_custom_line_blocks_send(self, client, session, ids):
        """Test that a custom line without a description cannot be sent."""
        client.post(_url(ids), json={})
        response = client.post(_url(ids, suffix='/items'), json={'custom': True})
        item_id = response.json['item']['id']
        client.patch(_url(ids, suffix=f'/items/{item_id}'), json={'unit_price': 50})
        client.post(_url(ids, suffix='/advance'))
        client.post(_url(ids, suffix='/advance'))

        response = client.post(_url(ids, suffix='/send'), json={'channel': 'email'})

        assert response.status_code == 400
        assert response.json['sent'] is False
        assert response.json['workflow']['send']['error'] == 'Line 1 needs a description before sending.'
        assert session.query(DocumentCommunication).count() == 0

    def test_custom_line_and_save_for_later(self, client, session, ids):
        """Test saving an invoice with a custom line as a draft."""
        client.post(_url(ids, 'invoice'), json={})
        response = client.post(_url(ids, 'invoice', '/items'), json={'custom': True})
        item_id = response.json['item']['id']
        client.patch(_url(ids, 'invoice', f'/items/{item_id}'),
                     json={'description': 'Emergency call-out', 'unit_price': '$150', 'taxable': False})

        response = client.post(_url(ids, 'invoice', '/save'))
        assert response.status_code == 200
        document = response.json['document']
        assert document['total'] == 150.0
        assert document['balance'] == 150.0
        assert session.get(Invoice, document['id']).status == 'draft'

    def test_save_empty_document(self, client, ids):
        """Test that saving an empty document is refused."""
        client.post(_url(ids), json={})
        response = client.post(_url(ids, suffix='/save'))
        assert response.status_code == 400
        assert response.json['saved'] is False

    def test_edit_existing_and_conflict(self, client, session, ids):
        """Test editing a saved estimate that someone else changed."""
        items = [LineItem.create(description='Tune-up', unit_price=100)]
        saved = insert_document(session, 'estimate', ids['job'], items, 13)

        response = client.post(_url(ids), json={'document_id': saved.id})
        assert response.json['workflow']['document']['items'][0]['id'] == items[0].id

        # Someone else edits the same estimate
        estimate = session.get(Estimate, saved.id)
        estimate.version = estimate.version + 1
        session.commit()

        response = client.post(_url(ids, suffix='/save'))
        assert response.status_code == 409
        assert 'changed by someone else' in response.json['notifications'][0]['message']

    def test_convert_estimate_in_builder(self, client, session, ids):
        """Test that saving a conversion marks the estimate converted."""
        items = [LineItem.create(description='Tune-up', unit_price=100)]
        estimate = insert_document(session, 'estimate', ids['job'], items, 13)

        response = client.post(_url(ids, 'invoice'), json={'source_estimate_id': estimate.id})
        document = response.json['workflow']['document']
        assert document['document_id'] is None
        assert document['source'] == {'type': 'estimate', 'id': estimate.id}

        response = client.post(_url(ids, 'invoice', '/save'))
        assert response.json['document']['estimate_id'] == estimate.id
        assert session.get(Estimate, estimate.id).status == 'converted'

    def test_unknown_job(self, client, ids):
        """Test opening a builder for a missing job."""
        response = client.post('/jobs/missing/builder/estimate', json={})
        assert response.status_code == 404

    def test_unknown_document_type(self, client, ids):
        """Test opening a builder for an unknown document type."""
        response = client.post(_url(ids, 'receipt'), json={})
        assert response.status_code == 404

    def test_close_builder(self, client, ids):
        """Test that closing drops the builder session."""
        client.post(_url(ids), json={})
        response = client.delete(_url(ids))
        assert response.json['workflow']['closed'] is True
        assert client.get(_url(ids)).status_code == 404
