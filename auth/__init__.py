"""
auth — caller authentication for the integration API.

Provides:
  • signed bearer token creation & verification (user + organization)
  • ``get_current_org_id`` FastAPI dependency
"""
