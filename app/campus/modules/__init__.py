"""
Feature modules live under this package.

Keep module boundaries clean: each module owns its models, service functions and
routes, while reusing platform primitives (auth, role gate, audit, storage, DB session).
"""
