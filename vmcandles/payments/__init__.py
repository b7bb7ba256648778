# vmcandles/payments/__init__.py
