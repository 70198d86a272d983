"""Local governor that checks changes before they are committed."""
