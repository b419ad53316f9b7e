"""auth/ -- Credential issuance, verification and transport for the starter API.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, users/, uploads/, or cache/.
api/ imports from auth/, not the other way around.
"""
