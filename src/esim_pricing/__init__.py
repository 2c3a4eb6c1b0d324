"""
eSIM Pricing Package

Pricing resolution for a travel-agent eSIM storefront.
Resolves retail prices using Override → Rule → Partner → Default pipeline.
"""

__version__ = "1.0.0"
