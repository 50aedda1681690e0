class ConfigurationError(ValueError):
    """
    Raised when tensors, calibration records or settings do not match the
    layout the decoder was configured for. Always fatal for the whole call.
    """
