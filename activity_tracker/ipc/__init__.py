"""Capture-source boundary over a Unix domain socket."""
