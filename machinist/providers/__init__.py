"""Cloud provider adapters implementing machinist's collaborator protocols."""
