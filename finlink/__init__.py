"""
FinLink - financial numeric entity extraction and US-GAAP concept linking.
"""

__version__ = "1.0.0"
