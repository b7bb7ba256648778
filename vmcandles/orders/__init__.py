# vmcandles/orders/__init__.py
