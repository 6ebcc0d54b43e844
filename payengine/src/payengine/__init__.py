"""
payengine - Fee resolution, coin selection and transaction lifecycle for
multi-chain payments.
"""

__version__ = "0.4.0"
