"""
paywallet - keys, addresses, signing and network backends for payments
"""

__version__ = "0.4.0"
