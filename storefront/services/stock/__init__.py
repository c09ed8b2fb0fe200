"""
Stock allocation services: quantifier, shipping estimator and coordinator.
"""
