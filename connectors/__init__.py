"""
connectors — channel authorization and token lifecycle.

Provides a generic provider framework that handles:
  • authorization-URL issuance with short-lived, single-use state
  • handshake completion (code → credential record) with identity and
    trial-abuse checks
  • transparent refresh-and-retry when invoking provider operations
  • mention search merged with a shared cache
  • Fernet encryption of secrets at rest

Each provider (GitHub, Mastodon, Bluesky, …) is a subclass of BaseProvider
plus the capability mixins it supports.
"""
