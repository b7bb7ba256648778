# vmcandles/profile/__init__.py
