"""Engine layer of gb_provisioner."""
