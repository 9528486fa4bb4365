"""
                QR Table Ordering Platform

Multi-tenant restaurant ordering backend: customers order from a
table's QR link, the kitchen works the order board, admins settle
bills and mark payments.
"""

__version__ = "1.0.0"
