# auth/__init__.py
"""
Identity: users, tenants, memberships, sessions and team management.
"""
