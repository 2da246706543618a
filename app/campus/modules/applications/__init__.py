"""Club application workflow (apply / cancel / accept / reject)."""
