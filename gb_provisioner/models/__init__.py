"""Models layer of gb_provisioner."""
