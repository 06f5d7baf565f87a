"""auth/ -- Authentication and authorization package for urbanfleet.

Token codec, credential store, authentication gate, and authorization resolver.

Layer rule: auth/ imports from core/ and read-only lookups from fleet/store.py.
api/ imports from auth/, not the other way around.
"""
