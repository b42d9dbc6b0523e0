"""DocVault Tags — Tag catalogue and document/tag associations."""
