"""Engine facade, configuration, models, errors and scheduling."""
