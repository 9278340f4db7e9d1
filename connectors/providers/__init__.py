"""
Built-in channel providers.  Each module holds one ``BaseProvider`` subclass;
``connectors.registry`` lists which of them are registered at startup.
"""
