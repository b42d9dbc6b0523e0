"""DocVault Search — Predicate builder, query composer, facets and suggestions."""
