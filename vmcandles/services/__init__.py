# vmcandles/services/__init__.py
