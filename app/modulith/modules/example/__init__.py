"""
Example module: a minimal CRUD resource showing the module layout.

  models.py         the Example entity
  repository.py     save/remove passthroughs to the session
  service.py        validation and writes (audited)
  services.yaml     service wiring
  persistence.yaml  entity wiring
  api.yaml          exposed operations
  api_test.yaml     test-environment override

Copy this directory under a new name to start a module; nothing central needs editing.
"""
