# -----------------------------------------------------------------------------
# INFRASTRUCTURE LAYER
# -----------------------------------------------------------------------------
# Terminal output, process execution and the cargo metadata loader.
# Import the submodules directly (cargo_matrix.infra.term, ...).
# -----------------------------------------------------------------------------
