# vmcandles/audio/__init__.py
