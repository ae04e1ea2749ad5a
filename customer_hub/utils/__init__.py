# customer_hub/utils/__init__.py
