"""
Recurring obligation engine services
"""
