"""Command line tool for running helm-operator."""
