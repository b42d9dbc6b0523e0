"""DocVault Sharing — Time- and count-bounded share links."""
