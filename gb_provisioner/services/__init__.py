"""Services layer of gb_provisioner."""
