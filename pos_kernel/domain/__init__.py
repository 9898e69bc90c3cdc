"""Pure domain helpers shared by services and engines."""
