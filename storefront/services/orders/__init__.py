"""
Order lifecycle services.
"""
