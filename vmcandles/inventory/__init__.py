# vmcandles/inventory/__init__.py
