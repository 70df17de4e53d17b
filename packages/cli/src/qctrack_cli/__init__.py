"""qctrack command line interface."""
