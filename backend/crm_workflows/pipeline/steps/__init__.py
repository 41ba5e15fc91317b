"""Steps shared by more than one workflow."""
