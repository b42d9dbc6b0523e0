"""DocVault Database — Declarative base, models, sessions and transactions."""
