"""Domain Event definitions.

Represents significant occurrences in the governor that other parts
of the system (logging, CLI display, tests) might react to.
"""
