# vmcandles/invoices/__init__.py
