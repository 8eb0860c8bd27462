"""
vision/__init__.py
"""
