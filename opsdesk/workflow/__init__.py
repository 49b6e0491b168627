"""Multi-step submission workflow (create-quotation wizard)."""

from opsdesk.workflow.steps import COMPLETE, PRODUCT, SERVICE, SHIPPING, parse_quantity, validate_step
from opsdesk.workflow.wizard import QuotationWizard

__all__ = ["COMPLETE", "PRODUCT", "SERVICE", "SHIPPING", "QuotationWizard", "parse_quantity", "validate_step"]
