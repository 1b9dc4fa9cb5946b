"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the governor to the outside world (HTTP, configuration files,
logging, the console) by implementing the interfaces defined in the domain layer.
"""
