"""
Trade Journal Flask application package.
"""

from journal_app.app import create_app

__all__ = ['create_app']
