"""
B2B trading platform backend.
"""
