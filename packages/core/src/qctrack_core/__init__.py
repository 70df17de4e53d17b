"""qctrack core: event normalization, session correlation and the tracking engine."""
