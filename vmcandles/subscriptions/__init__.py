# vmcandles/subscriptions/__init__.py
