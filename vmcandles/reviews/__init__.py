# vmcandles/reviews/__init__.py
