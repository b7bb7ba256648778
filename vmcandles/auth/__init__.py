# vmcandles/auth/__init__.py
