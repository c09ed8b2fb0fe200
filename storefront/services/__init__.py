"""
Domain services orchestrating the order aggregate.
"""
