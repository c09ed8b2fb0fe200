"""
Customer notifications for order events.
"""
