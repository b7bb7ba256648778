# vmcandles/cart/__init__.py
