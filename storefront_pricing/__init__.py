"""
Storefront pricing and currency normalization engine.

Derives final prices from merchant prices and markups, converts them into
display currencies and audits stored prices for magnitude anomalies.
"""

__version__ = "1.0.0"
