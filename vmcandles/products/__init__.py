# vmcandles/products/__init__.py
