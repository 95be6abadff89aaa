"""
Integration tests for the saved-document endpoints.
"""

import pytest

from fieldservice.pricing import LineItem
from fieldservice.services.document_service import insert_document


@pytest.fixture
def estimate_id(session, job):
    items = [
        LineItem.create(description='Tune-up', quantity=2, unit_price=100, our_price=40, discount=10),
        LineItem.create(description='Warranty', unit_price=89, taxable=False),
    ]
    return insert_document(session, 'estimate', job.id, items, 13, 'Side door').id


class TestDocumentsApi:
    """Tests for the documents API."""

    def test_list_and_detail(self, client, job, estimate_id):
        """Test listing documents and reading one."""
        job_id = job.id
        response = client.get(f'/documents/?job_id={job_id}')
        assert response.status_code == 200
        assert [d['id'] for d in response.json['documents']] == [estimate_id]

        response = client.get(f'/documents/estimate/{estimate_id}')
        document = response.json['document']
        assert document['total'] == 292.4
        assert len(document['items']) == 2

    def test_unknown_type(self, client):
        """Test requests for an unknown document type."""
        assert client.get('/documents/?type=receipt').status_code == 404
        assert client.get('/documents/receipt/abc').status_code == 404

    def test_missing_document(self, client, job):
        """Test reading a document that does not exist."""
        response = client.get('/documents/estimate/missing')
        assert response.status_code == 404
        assert response.json['status'] == 'error'

    def test_pdf(self, client, estimate_id):
        """Test downloading a document PDF."""
        response = client.get(f'/documents/estimate/{estimate_id}/pdf?download=1')

        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')
        assert 'attachment' in response.headers['Content-Disposition']

    def test_convert_and_pay(self, client, estimate_id):
        """Test converting an estimate and paying part of the invoice."""
        response = client.post(f'/documents/estimate/{estimate_id}/convert')
        assert response.status_code == 201
        invoice = response.json['document']
        assert invoice['estimate_id'] == estimate_id
        assert invoice['balance'] == 292.4

        response = client.post(f"/documents/invoice/{invoice['id']}/payments",
                               json={'amount': 92.4, 'method': 'card'})
        assert response.status_code == 201
        assert response.json['document']['status'] == 'partial'
        assert response.json['document']['balance'] == 200.0

        response = client.post(f'/documents/estimate/{estimate_id}/convert')
        assert response.status_code == 409

    def test_payment_validation(self, client, session, job):
        """Test that a non-numeric payment is rejected."""
        invoice = insert_document(session, 'invoice', job.id, [LineItem.create(unit_price=50)], 0)
        response = client.post(f'/documents/invoice/{invoice.id}/payments', json={'amount': 'abc'})
        assert response.status_code == 400

    def test_communications(self, client, estimate_id):
        """Test listing a document's communications."""
        response = client.get(f'/documents/estimate/{estimate_id}/communications')
        assert response.json['communications'] == []


class TestHealth:
    """Tests for health and metrics endpoints."""

    def test_health(self, client):
        """Test the database health check."""
        response = client.get('/health')
        assert response.status_code == 200
        assert response.json['database'] == 'connected'

    def test_cache_degraded_without_redis(self, client):
        """Test that the cache check reports degraded without Redis."""
        response = client.get('/health/cache')
        assert response.status_code == 200
        assert response.json['status'] == 'degraded'

    def test_metrics(self, client):
        """Test the Prometheus endpoint."""
        client.get('/health')
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'http_requests_total' in response.data
