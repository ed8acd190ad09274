"""Grade upload validation and consolidation for the school records back end."""
