"""
Document status constants.
Stored in UPPERCASE, matching what the document screens filter on.
"""

OPEN = "OPEN"
DRAFT = "DRAFT"
CONFIRMED = "CONFIRMED"
CANCELLED = "CANCELLED"
DELETED = "DELETED"

# Invoice statuses that refuse header/line edits
LOCKED_INVOICE_STATUSES = {CONFIRMED}
