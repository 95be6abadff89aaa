"""Models package - exports all SQLAlchemy models."""
from fieldservice.models.client import Client
from fieldservice.models.job import Job
from fieldservice.models.product import Product
from fieldservice.models.document_line import DocumentLine
from fieldservice.models.estimate import Estimate, EstimateStatus
from fieldservice.models.invoice import Invoice, InvoiceStatus
from fieldservice.models.payment import Payment
from fieldservice.models.document_communication import DocumentCommunication
from fieldservice.models.conversation import Conversation
from fieldservice.models.message import Message
from fieldservice.models.portal_access_token import PortalAccessToken

DOCUMENT_MODELS = {
    'estimate': Estimate,
    'invoice': Invoice,
}

__all__ = [
    'Client', 'Job', 'Product',
    'DocumentLine', 'Estimate', 'EstimateStatus', 'Invoice', 'InvoiceStatus',
    'Payment', 'DocumentCommunication',
    'Conversation', 'Message',
    'PortalAccessToken',
    'DOCUMENT_MODELS',
]
