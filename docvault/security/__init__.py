"""DocVault Security — Access policy evaluation and permission grants."""
