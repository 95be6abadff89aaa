"""Estimate/invoice builder state."""
from fieldservice.builder.cancellation import CancellationToken
from fieldservice.builder.notifier import Notifier, Notification
from fieldservice.builder.document_builder import (
    DocumentBuilder, EstimateBuilder, InvoiceBuilder, BUILDERS,
)
from fieldservice.builder.registry import BuilderRegistry

__all__ = [
    'CancellationToken', 'Notifier', 'Notification',
    'DocumentBuilder', 'EstimateBuilder', 'InvoiceBuilder', 'BUILDERS',
    'BuilderRegistry',
]
