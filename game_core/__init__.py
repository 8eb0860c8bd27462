"""
game_core/__init__.py
"""
