"""Core Application Layer: the request governor and its streaming sessions.

Connects the domain layer with the infrastructure layer through interfaces.
"""
