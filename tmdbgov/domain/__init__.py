"""Domain Layer: request descriptors, stream sessions, events and ports.

Nothing in here talks to the network; infrastructure adapters implement
the interfaces defined under ``interfaces``.
"""
