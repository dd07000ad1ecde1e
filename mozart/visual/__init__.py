"""Visual flow models, routing, sandboxed transforms and the reaction engine."""
