# vmcandles/wishlist/__init__.py
