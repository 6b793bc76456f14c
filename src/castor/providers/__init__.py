"""Provider adapters.

Concrete adapters live in their own modules; ``registry.get_adapter`` maps a
provider name to one. Nothing is imported here so that core modules can use
``castor.providers.models`` without loading every adapter.
"""
