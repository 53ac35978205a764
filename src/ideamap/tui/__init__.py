"""terminal editor for ideamap."""
