"""Application services. Import from the submodules directly."""
