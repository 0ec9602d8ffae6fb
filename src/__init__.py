"""Local source package for the botcall client."""
