"""
HD keys, address encoding and transaction signing.
"""
