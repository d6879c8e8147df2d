"""
Template registry: the built-in catalog, per-type content schemas and the
administrative template endpoints.
"""
