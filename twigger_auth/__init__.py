"""Identity resolution, workspaces, sessions and audit trail."""
