"""
Feature modules live under this package, one directory per module.

A module is activated by its wiring fragments (services.yaml, persistence.yaml,
api.yaml and their _<env> variants); see app.modulith.registry. Keep module
boundaries clean: each module owns its models, repository and services while
reusing platform primitives (audit, DB session, resource exposure).
"""
