# vmcandles/uploads/__init__.py
