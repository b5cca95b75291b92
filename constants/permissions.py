"""
Permission keys checked before mutating calls.
"""

PO_CREATE = "po.create"
PO_EDIT = "po.edit"
PO_DELETE = "po.delete"

SHIPMENT_CREATE = "shipment.create"
SHIPMENT_CANCEL = "shipment.cancel"
SHIPMENT_DELETE = "shipment.delete"

INVOICE_CREATE = "invoice.create"
INVOICE_EDIT = "invoice.edit"
INVOICE_DELETE = "invoice.delete"

PACKING_LIST_CREATE = "packing_list.create"
PACKING_LIST_EDIT = "packing_list.edit"
