"""Step workflow for the estimate/invoice dialog."""
from fieldservice.workflow.send_step import SendDocumentStep, DEFAULT_MESSAGE
from fieldservice.workflow.stepped_workflow import SteppedDocumentWorkflow, STEPS

__all__ = ['SendDocumentStep', 'DEFAULT_MESSAGE', 'SteppedDocumentWorkflow', 'STEPS']
