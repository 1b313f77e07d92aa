"""
Services layer for microshop.

This module contains domain-focused service classes that encapsulate
business logic, separating it from HTTP handling in routers.
"""
