"""Customer identity resolution, ranked search and merge tooling."""
