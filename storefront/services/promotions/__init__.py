"""
Promotion handlers applied to orders.
"""
