"""Code-review agent committed onto project branches by the bootstrapper."""
