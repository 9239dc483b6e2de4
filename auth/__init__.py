"""auth/ -- Authentication core for AuthKit.

Layer rule: auth/ imports only stdlib + third-party libraries (auth/oauth.py
additionally names core.config.Settings for type checking). It does NOT import
from api/. api/ imports from auth/, not the other way around.

Components, leaf first: store, passwords, tokens, resolver, service.
"""
